"""Command-line interface: ``staging-sync <command>``.

Commands:
    init       Write a starter config file
    diff       List file or database changes (or one file's diff)
    conflicts  Detect or list conflicts
    resolve    Record a decision for a conflict
    sync       Apply selected items (optionally as a dry run)
    baseline   Record destination values as baselines
    status     Show reachability and conflict counts

Output is the reporter's text, or JSON with ``--json``.  Logs go to
stderr so stdout stays parseable.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv

from . import __version__
from .config import load_config, require_pair
from .config_loader import ensure_config
from .errors import StagingSyncError
from .logger import setup_logging
from .sync.engine import StagingEngine
from .sync.reporter import (
    conflicts_to_json,
    database_report_to_json,
    file_report_to_json,
    format_conflicts,
    format_database_report,
    format_file_diff,
    format_file_report,
    format_grouped_changes,
    format_sync_report,
    grouped_to_json,
    report_to_json,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="staging-sync",
        description="Review and push staging changes to production",
    )
    parser.add_argument("--pair", default="default", help="Environment pair name")
    parser.add_argument("--source-root", help="Source (staging) file tree root")
    parser.add_argument("--destination-root", help="Destination file tree root")
    parser.add_argument("--source-db-url", help="Source database URL")
    parser.add_argument("--destination-db-url", help="Destination database URL")
    parser.add_argument("--state-dir", help="Baseline/conflict state directory")
    parser.add_argument("--json", action="store_true", help="Print JSON output")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--debug-format", choices=["text", "json"], default="text"
    )
    parser.add_argument(
        "--version", action="version", version=f"staging-sync {__version__}"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Write a starter config file")

    diff = sub.add_parser("diff", help="List changes")
    diff.add_argument(
        "--database", action="store_true", help="Diff database rows instead of files"
    )
    diff.add_argument(
        "--grouped", action="store_true", help="Group database rows into content units"
    )
    diff.add_argument("--path", help="Show the unified diff of one file")

    conflicts = sub.add_parser("conflicts", help="Detect or list conflicts")
    conflicts.add_argument(
        "items", nargs="*", help="Items to check; lists recorded conflicts when omitted"
    )
    conflicts.add_argument(
        "--open", action="store_true", help="Only list unresolved conflicts"
    )

    resolve = sub.add_parser("resolve", help="Resolve a conflict")
    resolve.add_argument("conflict_id", type=int)
    resolve.add_argument(
        "resolution",
        choices=["source", "keep-source", "destination", "keep-destination", "custom"],
    )
    resolve.add_argument(
        "--value", help="Custom value (JSON is parsed, anything else is text)"
    )

    sync = sub.add_parser("sync", help="Apply selected items")
    sync.add_argument("items", nargs="+", help="Paths or db:<table>:<key> references")
    sync.add_argument("--dry-run", action="store_true")

    baseline = sub.add_parser("baseline", help="Capture baselines")
    baseline.add_argument(
        "items", nargs="*", help="Items to record; everything when omitted"
    )

    sub.add_parser("status", help="Show pair status")
    return parser


def _parse_value(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _emit(args: argparse.Namespace, text: str, structured: Any) -> None:
    if args.json:
        print(json.dumps(structured, indent=2, default=str))
    else:
        print(text)


def _run_command(engine: StagingEngine, args: argparse.Namespace) -> int:
    match args.command:
        case "diff":
            if args.path:
                detail = engine.file_diff(args.path)
                _emit(args, format_file_diff(detail), detail.model_dump())
            elif args.database and args.grouped:
                grouped = engine.group_view()
                _emit(args, format_grouped_changes(grouped), grouped_to_json(grouped))
            elif args.database:
                report = engine.database_report()
                _emit(args, format_database_report(report), database_report_to_json(report))
            else:
                report = engine.file_report()
                _emit(args, format_file_report(report), file_report_to_json(report))
            return 0

        case "conflicts":
            if args.items:
                found = engine.detect_conflicts(args.items)
            else:
                found = engine.list_conflicts(include_resolved=not args.open)
            _emit(args, format_conflicts(found), conflicts_to_json(found))
            return 1 if any(not c.resolved for c in found) else 0

        case "resolve":
            final = engine.resolve_conflict(
                args.conflict_id, args.resolution, _parse_value(args.value)
            )
            _emit(
                args,
                f"Conflict #{args.conflict_id} resolved: {args.resolution}",
                {"conflict_id": args.conflict_id, "final_value": final},
            )
            return 0

        case "sync":
            report = engine.synchronize_report(args.items, dry_run=args.dry_run)
            _emit(args, format_sync_report(report), report_to_json(report))
            return 1 if report.errors else 0

        case "baseline":
            count = engine.capture_baseline(args.items or None)
            _emit(args, f"Captured {count} baseline(s).", {"captured": count})
            return 0

        case "status":
            status = engine.status()
            _emit(args, json.dumps(status, indent=2), status)
            return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()

    if args.command == "init":
        setup_logging(mode="cli", debug=args.debug, log_file=args.log_file)
        print(ensure_config())
        return 0

    overrides = {
        "source_root": args.source_root,
        "destination_root": args.destination_root,
        "source_database_url": args.source_db_url,
        "destination_database_url": args.destination_db_url,
        "state_dir": args.state_dir,
    }
    try:
        config = load_config(args.pair, overrides=overrides)
        setup_logging(
            mode="cli",
            debug=args.debug,
            log_file=args.log_file,
            debug_format=args.debug_format,
            config=config.logging,
        )
        require_pair(config, args.pair)
        engine = StagingEngine.from_config(args.pair, config)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        return _run_command(engine, args)
    except (StagingSyncError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    finally:
        engine.close()


if __name__ == "__main__":
    raise SystemExit(main())
