"""Stale local profile purge.

Profiles come from a ProfileSource (WMI Win32_UserProfile via PowerShell
in production). Selection is pure; removal goes through the source.
Special and loaded profiles are never touched.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import PureWindowsPath
from typing import Callable, Iterable, Protocol
from uuid import UUID

from sidring.codec import FormatError, decode_uuid, is_cloud_sid

logger = logging.getLogger("sidring.profiles")

_LIST_PROFILES_PS = (
    "Get-CimInstance -ClassName Win32_UserProfile | "
    "Select-Object SID, LocalPath, LastUseTime, Special, Loaded | "
    "ConvertTo-Json -Compress"
)
_REMOVE_PROFILE_PS = (
    "Get-CimInstance -ClassName Win32_UserProfile -Filter \"SID='{sid}'\" | "
    "Remove-CimInstance -ErrorAction Stop"
)
# Windows PowerShell 5.1 serializes DateTime as /Date(<ms since epoch>)/.
_MS_DATE_RE = re.compile(r"/Date\((-?\d+)\)/")
_SID_RE = re.compile(r"S-1-[0-9-]+")


class ProfileSourceError(RuntimeError):
    """Enumerating or removing profiles failed."""


@dataclass(frozen=True)
class UserProfile:
    sid: str
    local_path: str
    last_use_time: datetime | None = None
    special: bool = False
    loaded: bool = False

    @property
    def account_name(self) -> str:
        """Profile folder name, e.g. 'jdoe' for C:\\Users\\jdoe."""
        return PureWindowsPath(self.local_path).name

    @property
    def object_id(self) -> UUID | None:
        """Entra ID object ID for cloud accounts, None otherwise."""
        if not is_cloud_sid(self.sid):
            return None
        try:
            return decode_uuid(self.sid)
        except FormatError:
            return None


@dataclass(frozen=True)
class PurgePolicy:
    inactivity_days: int = 90
    excluded_accounts: tuple[str, ...] = ()
    dry_run: bool = True

    @classmethod
    def from_config(cls, config) -> PurgePolicy:
        return cls(
            inactivity_days=config.profile_inactivity_days,
            excluded_accounts=tuple(config.profile_excluded_accounts),
            dry_run=config.profile_dry_run,
        )

    def is_excluded(self, profile: UserProfile) -> bool:
        name = profile.account_name.lower()
        return any(name == excluded.lower() for excluded in self.excluded_accounts)


@dataclass
class PurgeReport:
    """What a purge run selected, removed and failed on."""

    dry_run: bool
    cutoff: datetime
    selected: list[UserProfile] = field(default_factory=list)
    removed: list[UserProfile] = field(default_factory=list)
    failed: list[tuple[UserProfile, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class ProfileSource(Protocol):
    def list_profiles(self) -> list[UserProfile]: ...

    def remove_profile(self, profile: UserProfile) -> None: ...


def select_stale_profiles(
    profiles: Iterable[UserProfile],
    policy: PurgePolicy,
    now: datetime,
) -> list[UserProfile]:
    """Profiles last used before now - inactivity_days, minus protected ones."""
    cutoff = now - timedelta(days=policy.inactivity_days)
    stale = []
    for profile in profiles:
        if profile.special or profile.loaded:
            continue
        if policy.is_excluded(profile):
            logger.debug("Skipping excluded profile %s", profile.local_path)
            continue
        if profile.last_use_time is None:
            logger.debug("Skipping profile with no last use time %s", profile.local_path)
            continue
        if profile.last_use_time < cutoff:
            stale.append(profile)
    return stale


def purge_stale_profiles(
    source: ProfileSource,
    policy: PurgePolicy,
    now: datetime | None = None,
) -> PurgeReport:
    """Select stale profiles from source and remove them unless dry_run.

    A failed removal is recorded on the report; the run continues.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    report = PurgeReport(
        dry_run=policy.dry_run,
        cutoff=now - timedelta(days=policy.inactivity_days),
    )
    report.selected = select_stale_profiles(source.list_profiles(), policy, now)
    logger.info(
        "%d profile(s) unused since %s",
        len(report.selected),
        report.cutoff.isoformat(),
    )

    for profile in report.selected:
        if policy.dry_run:
            logger.info("Dry run: would remove %s (%s)", profile.local_path, profile.sid)
            continue
        try:
            source.remove_profile(profile)
        except ProfileSourceError as exc:
            logger.error("Failed to remove %s: %s", profile.local_path, exc)
            report.failed.append((profile, str(exc)))
        else:
            logger.info("Removed %s (%s)", profile.local_path, profile.sid)
            report.removed.append(profile)
    return report


# ── PowerShell / CIM source ───────────────────────────────────


def run_powershell(command: str) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", command],
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        raise ProfileSourceError(f"Cannot start PowerShell: {exc}") from exc


def parse_cim_datetime(value) -> datetime | None:
    """Parse a LastUseTime as emitted by ConvertTo-Json (5.1 or 7.x)."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        # Some hosts emit {"value": "/Date(...)/", "DateTime": "..."}.
        value = value.get("value")
        if value is None:
            return None
    match = _MS_DATE_RE.fullmatch(str(value))
    if match:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ProfileSourceError(f"Unrecognized LastUseTime {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def profiles_from_json(payload: str) -> list[UserProfile]:
    """Build UserProfile records from ConvertTo-Json output."""
    if not payload.strip():
        return []
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ProfileSourceError(f"Unparseable profile listing: {exc}") from exc
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ProfileSourceError(f"Unexpected profile listing: {payload[:80]!r}")
    profiles = []
    for item in data:
        if not isinstance(item, dict) or not isinstance(item.get("SID"), str):
            raise ProfileSourceError(f"Profile entry without a SID: {item!r}")
        profiles.append(
            UserProfile(
                sid=item["SID"],
                local_path=item.get("LocalPath") or "",
                last_use_time=parse_cim_datetime(item.get("LastUseTime")),
                special=bool(item.get("Special")),
                loaded=bool(item.get("Loaded")),
            )
        )
    return profiles


class CimProfileSource:
    """Win32_UserProfile through PowerShell's CIM cmdlets."""

    def __init__(self, runner: Callable[[str], subprocess.CompletedProcess] = run_powershell):
        self._run = runner

    def list_profiles(self) -> list[UserProfile]:
        result = self._run(_LIST_PROFILES_PS)
        if result.returncode != 0:
            raise ProfileSourceError(result.stderr.strip() or "Get-CimInstance failed")
        return profiles_from_json(result.stdout)

    def remove_profile(self, profile: UserProfile) -> None:
        if not _SID_RE.fullmatch(profile.sid):
            raise ProfileSourceError(f"Refusing to remove profile with SID {profile.sid!r}")
        result = self._run(_REMOVE_PROFILE_PS.format(sid=profile.sid))
        if result.returncode != 0:
            raise ProfileSourceError(result.stderr.strip() or "Remove-CimInstance failed")
