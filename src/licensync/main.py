#!/usr/bin/env python3

# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from licensync.app import (
    import_partner_file,
    pull_partner_licenses,
    retry_pending_licenses,
    run_comprehensive_sync,
    run_legacy_sync,
    sync_license,
    sync_status,
)
from licensync.common.logging import configure_logging
from licensync.config import ConfigurationError
from licensync.domain.reconciliation import ItemSyncError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from licensync.domain.reconciliation import MirrorReport, SingleSyncResult, SyncRunSummary


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile internal licenses with the partner")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug output",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "comprehensive",
        help="Fill gaps in internal licenses and create the ones that are missing",
    )
    subparsers.add_parser(
        "legacy",
        help="Overwrite matched internal licenses from the partner mirror",
    )
    import_parser = subparsers.add_parser(
        "import",
        help="Mirror a partner export file (JSON or JSON lines)",
    )
    import_parser.add_argument("file", type=Path, help="Path to the export file")
    subparsers.add_parser("pull", help="Mirror every license from the partner API")
    subparsers.add_parser("retry", help="Re-fetch pending and failed mirror records")
    sync_parser = subparsers.add_parser("sync", help="Fetch one license from the partner API")
    sync_parser.add_argument("appid", help="Partner appid of the license")
    subparsers.add_parser("status", help="Show sync status counts of the mirror")

    return parser.parse_args(list(argv))


def _print_run(summary: SyncRunSummary) -> None:
    print(
        f"{summary.mode} sync: {summary.synced_count} synced "
        f"({summary.updated_count} updated, {summary.created_count} created), "
        f"{summary.failed_count} failed of {summary.planned_count} planned"
    )
    if summary.truncated:
        print("Run stopped early; results are partial", file=sys.stderr)
    for failure in summary.errors:
        print(f"  {failure.operation.describe()}: {failure.message}", file=sys.stderr)


def _print_mirror(label: str, report: MirrorReport) -> None:
    print(
        f"{label}: {report.created_count} created, {report.updated_count} updated, "
        f"{report.failed_count} failed, {report.duplicates_dropped} duplicates dropped"
    )
    for failure in report.errors:
        print(f"  {failure.record.describe()}: {failure.message}", file=sys.stderr)


def _report_single(result: SingleSyncResult) -> None:
    if not result.succeeded:
        raise ItemSyncError(f"sync of {result.appid} failed: {result.error}")
    action = "created" if result.created else "updated"
    print(f"sync: {result.appid} {action}")


def _dispatch(args: argparse.Namespace) -> None:
    if args.command == "comprehensive":
        _print_run(run_comprehensive_sync())
    elif args.command == "legacy":
        _print_run(run_legacy_sync())
    elif args.command == "import":
        if not args.file.is_file():
            raise ValueError(f"File not found: {args.file}")
        _print_mirror("import", import_partner_file(args.file))
    elif args.command == "pull":
        _print_mirror("pull", pull_partner_licenses())
    elif args.command == "retry":
        _print_mirror("retry", retry_pending_licenses())
    elif args.command == "sync":
        _report_single(sync_license(args.appid))
    elif args.command == "status":
        stats = sync_status()
        print(
            f"total={stats.total} synced={stats.synced} failed={stats.failed} "
            f"pending={stats.pending} success_rate={stats.success_rate}%"
        )
    else:
        raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    parsed_args: argparse.Namespace
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        _dispatch(parsed_args)
    except (ValueError, ConfigurationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:  # noqa: BLE001
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    print("\nClosed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
