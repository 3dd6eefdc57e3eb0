#!/usr/bin/env python3

# ruff: noqa: T201

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from subsync.app import read_progress, resolve_conflict, restart_sync, run_sync
from subsync.config import configure_logging
from subsync.domain.model import Side, SyncMode

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)

_CANCEL = threading.Event()


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile customers with MailerLite subscribers")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Process one bounded slice of the sync")
    run.add_argument(
        "--mode",
        choices=[mode.value for mode in SyncMode],
        default=SyncMode.BIDIRECTIONAL.value,
        help="Which directions may be written (default: %(default)s)",
    )
    run.add_argument(
        "--email",
        dest="emails",
        action="append",
        help="Restrict the sync to this address (repeatable)",
    )
    run.add_argument(
        "--emails-file",
        type=Path,
        help="File with one address per line to restrict the sync to",
    )
    run.add_argument("--max-records", type=int, help="Units to process before pausing")
    run.add_argument("--max-duration-ms", type=int, help="Wall-clock budget for this slice")
    run.add_argument("--dry-run", action="store_true", help="Report changes without writing")
    run.add_argument(
        "--restart",
        action="store_true",
        help="Discard the stored checkpoint and plan from scratch",
    )
    run.add_argument(
        "--repair",
        action="store_true",
        help="Fill blank primary fields from MailerLite without raising conflicts",
    )

    resolve = subparsers.add_parser("resolve", help="Resolve a pending conflict")
    resolve.add_argument("conflict_id", help="Conflict id (UUID)")
    resolve.add_argument(
        "--source",
        choices=[side.value for side in Side],
        required=True,
        help="Side supplying the winning value; the other side is updated",
    )
    resolve.add_argument(
        "--value",
        default=None,
        help="Winning value; omit to clear the field on the target side",
    )
    resolve.add_argument("--caller", help="Identity recorded for authorization checks")

    subparsers.add_parser("status", help="Show the stored checkpoint and run status")
    subparsers.add_parser("restart", help="Discard the checkpoint; the next run starts over")
    return parser.parse_args(list(argv))


def _read_emails(args: argparse.Namespace) -> list[str] | None:
    emails: list[str] = list(args.emails or [])
    if args.emails_file is not None:
        try:
            lines = args.emails_file.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise ValueError(f"Cannot read {args.emails_file}: {exc}") from exc
        emails.extend(line.strip() for line in lines if line.strip())
    if args.emails is None and args.emails_file is None:
        return None
    return emails


def _emit(payload: dict[str, object]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        emails = _read_emails(parsed_args) if parsed_args.command == "run" else None
        for name in ("max_records", "max_duration_ms"):
            value = getattr(parsed_args, name, None)
            if value is not None and value <= 0:
                raise ValueError(f"--{name.replace('_', '-')} must be positive")
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        if parsed_args.command == "run":
            payload = run_sync(
                parsed_args.mode,
                emails=emails,
                max_records=parsed_args.max_records,
                max_duration_ms=parsed_args.max_duration_ms,
                dry_run=parsed_args.dry_run,
                restart=parsed_args.restart,
                repair=parsed_args.repair,
                cancel_event=_CANCEL,
            )
            _emit(payload)
            if not payload["ok"]:
                sys.exit(2)
        elif parsed_args.command == "resolve":
            payload = resolve_conflict(
                parsed_args.conflict_id,
                parsed_args.value,
                parsed_args.source,
                caller=parsed_args.caller,
            )
            _emit(payload)
            if not payload["success"]:
                sys.exit(1)
        elif parsed_args.command == "status":
            _emit(read_progress())
        elif parsed_args.command == "restart":
            _emit(restart_sync())
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error during sync")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """First Ctrl+C stops after the current record; a second one exits immediately."""
    if _CANCEL.is_set():
        print("\nClosed by user (Ctrl+C)")
        sys.exit(0)
    print("\nStopping after the current record (Ctrl+C again to quit)")
    _CANCEL.set()


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
