"""Configuration for sidring.

Reads from config/sidring.ini if present, environment variables override.
Credentials never checked into version control.
"""

from __future__ import annotations

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path

_CONFIG_FILE = Path(__file__).resolve().parent.parent.parent / "config" / "sidring.ini"

DEFAULT_EXCLUDED_ACCOUNTS = ("Administrator", "Default", "defaultuser0", "Public")


class ConfigError(ValueError):
    """A configuration value could not be converted."""


@dataclass(frozen=True)
class SidringConfig:
    """Toolkit configuration. Immutable once loaded."""

    api_key: str = ""
    host: str = "127.0.0.1"
    port: int = 8000
    max_batch: int = 1000
    log_level: str = "INFO"
    log_file: str = ""
    profile_inactivity_days: int = 90
    profile_excluded_accounts: tuple[str, ...] = DEFAULT_EXCLUDED_ACCOUNTS
    profile_dry_run: bool = True
    graph_tenant_id: str = ""
    graph_client_id: str = ""
    graph_client_secret: str = ""
    export_path: str = "managed_devices.csv"


def _to_int(key: str, val: str) -> int:
    try:
        return int(val)
    except ValueError:
        raise ConfigError(f"{key}: expected an integer, got {val!r}") from None


def _to_bool(key: str, val: str) -> bool:
    lowered = val.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{key}: expected a boolean, got {val!r}")


def _to_level(key: str, val: str) -> str:
    level = val.strip().upper()
    if level not in logging.getLevelNamesMapping():
        raise ConfigError(f"{key}: expected a logging level name, got {val!r}")
    return level


def _to_accounts(key: str, val: str) -> tuple[str, ...]:
    return tuple(name.strip() for name in val.split(",") if name.strip())


_CONVERTERS = {
    "port": _to_int,
    "max_batch": _to_int,
    "log_level": _to_level,
    "profile_inactivity_days": _to_int,
    "profile_dry_run": _to_bool,
    "profile_excluded_accounts": _to_accounts,
}

_INI_KEYS = {
    "gateway": [
        ("api_key", "api_key"),
        ("host", "host"),
        ("port", "port"),
        ("max_batch", "max_batch"),
    ],
    "logging": [
        ("level", "log_level"),
        ("file", "log_file"),
    ],
    "profiles": [
        ("inactivity_days", "profile_inactivity_days"),
        ("excluded_accounts", "profile_excluded_accounts"),
        ("dry_run", "profile_dry_run"),
    ],
    "graph": [
        ("tenant_id", "graph_tenant_id"),
        ("client_id", "graph_client_id"),
        ("client_secret", "graph_client_secret"),
        ("export_path", "export_path"),
    ],
}

_ENV_MAP = {
    "SIDRING_API_KEY": "api_key",
    "SIDRING_HOST": "host",
    "SIDRING_PORT": "port",
    "SIDRING_MAX_BATCH": "max_batch",
    "SIDRING_LOG_LEVEL": "log_level",
    "SIDRING_LOG_FILE": "log_file",
    "SIDRING_PROFILE_INACTIVITY_DAYS": "profile_inactivity_days",
    "SIDRING_PROFILE_EXCLUDED_ACCOUNTS": "profile_excluded_accounts",
    "SIDRING_PROFILE_DRY_RUN": "profile_dry_run",
    "SIDRING_GRAPH_TENANT_ID": "graph_tenant_id",
    "SIDRING_GRAPH_CLIENT_ID": "graph_client_id",
    "SIDRING_GRAPH_CLIENT_SECRET": "graph_client_secret",
    "SIDRING_EXPORT_PATH": "export_path",
}


def _convert(config_key: str, val: str):
    converter = _CONVERTERS.get(config_key)
    if converter is None:
        return val
    return converter(config_key, val)


def load_config(config_path: Path | None = None) -> SidringConfig:
    """Load config from INI file, then override with environment variables."""
    path = config_path or _CONFIG_FILE
    kwargs: dict = {}

    if path.exists():
        parser = configparser.ConfigParser()
        parser.read(path)
        for section, keys in _INI_KEYS.items():
            if not parser.has_section(section):
                continue
            for ini_key, config_key in keys:
                val = parser.get(section, ini_key, fallback=None)
                if val is not None:
                    kwargs[config_key] = _convert(config_key, val)

    for env_key, config_key in _ENV_MAP.items():
        val = os.getenv(env_key)
        if val is not None:
            kwargs[config_key] = _convert(config_key, val)

    return SidringConfig(**kwargs)
