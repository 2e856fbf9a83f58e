"""sidring command line.

    sidring encode 73d664e4-0886-4a73-b745-c694da45ddb4
    sidring decode S-1-12-1-1943430372-1249052806-2496021943-3034400218
    sidring purge-profiles --days 120 --apply
    sidring export-devices --output devices.csv --since 2024-01-01
    sidring serve
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from sidring.codec import FormatError, decode_uuid, encode
from sidring.config import ConfigError, SidringConfig, load_config
from sidring.devices import GraphClient, GraphError, export_devices
from sidring.profiles import CimProfileSource, ProfileSourceError, PurgePolicy, purge_stale_profiles

logger = logging.getLogger("sidring")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(config: SidringConfig, verbose: bool = False) -> None:
    """Root handler on stderr, plus an append-mode file if configured."""
    level = logging.DEBUG if verbose else logging.getLevelNamesMapping()[config.log_level]
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, mode="a", encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def _convert_all(values: list[str], convert) -> int:
    status = 0
    for value in values:
        try:
            print(convert(value))
        except FormatError as exc:
            print(f"error: {value}: {exc.reason}", file=sys.stderr)
            status = 1
    return status


def cmd_encode(args, config: SidringConfig) -> int:
    return _convert_all(args.guids, encode)


def cmd_decode(args, config: SidringConfig) -> int:
    return _convert_all(args.sids, lambda sid: str(decode_uuid(sid)))


def cmd_purge_profiles(args, config: SidringConfig) -> int:
    policy = PurgePolicy.from_config(config)
    overrides = {}
    if args.days is not None:
        overrides["inactivity_days"] = args.days
    if args.exclude:
        overrides["excluded_accounts"] = policy.excluded_accounts + tuple(args.exclude)
    if args.apply:
        overrides["dry_run"] = False
    policy = dataclasses.replace(policy, **overrides)

    try:
        report = purge_stale_profiles(CimProfileSource(), policy)
    except ProfileSourceError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    for profile in report.selected:
        object_id = profile.object_id
        suffix = f" [{object_id}]" if object_id else ""
        print(f"{profile.local_path}\t{profile.sid}\t{profile.last_use_time:%Y-%m-%d}{suffix}")
    verb = "would remove" if report.dry_run else "removed"
    count = len(report.selected) if report.dry_run else len(report.removed)
    print(f"{verb} {count} profile(s), {len(report.failed)} failure(s)", file=sys.stderr)
    return 0 if report.ok else 1


def _parse_since(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cmd_export_devices(args, config: SidringConfig) -> int:
    output = Path(args.output or config.export_path)
    try:
        with GraphClient(
            config.graph_tenant_id,
            config.graph_client_id,
            config.graph_client_secret,
        ) as client:
            count = export_devices(client.iter_managed_devices(), output, enrolled_since=args.since)
    except GraphError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(f"exported {count} device(s) to {output}", file=sys.stderr)
    return 0


def cmd_serve(args, config: SidringConfig) -> int:
    import uvicorn

    from sidring.app import create_app

    uvicorn.run(
        create_app(config),
        host=args.host or config.host,
        port=args.port or config.port,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sidring",
        description="Entra ID object ID / SID conversion and endpoint housekeeping.",
    )
    parser.add_argument("--config", type=Path, help="INI file (default: config/sidring.ini)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("encode", help="object ID(s) to S-1-12-1 SID(s)")
    p.add_argument("guids", nargs="+", metavar="GUID")
    p.set_defaults(func=cmd_encode)

    p = sub.add_parser("decode", help="S-1-12-1 SID(s) to object ID(s)")
    p.add_argument("sids", nargs="+", metavar="SID")
    p.set_defaults(func=cmd_decode)

    p = sub.add_parser("purge-profiles", help="remove local profiles unused for N days")
    p.add_argument("--days", type=int, help="inactivity threshold in days")
    p.add_argument("--exclude", action="append", metavar="ACCOUNT", help="extra account to keep")
    p.add_argument("--apply", action="store_true", help="actually remove (default is a dry run)")
    p.set_defaults(func=cmd_purge_profiles)

    p = sub.add_parser("export-devices", help="export Intune managed devices to CSV")
    p.add_argument("--output", help="CSV path")
    p.add_argument("--since", type=_parse_since, help="only devices enrolled on/after this date")
    p.set_defaults(func=cmd_export_devices)

    p = sub.add_parser("serve", help="run the HTTP conversion gateway")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    configure_logging(config, args.verbose)
    return args.func(args, config)
