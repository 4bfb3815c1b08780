"""
Placewatch CLI
==============

Commands:
    run        - Run one full sync cycle now
    daemon     - Start the scheduler (sync, heartbeat, weekly summary)
    heartbeat  - Send the admin heartbeat now
    summary    - Send the weekly summary now
    status     - Show persisted run state
    init-db    - Create tables and indexes
    serve      - Run the dashboard API

Usage:
    placewatch run
    placewatch daemon --force
    placewatch status --json
    placewatch serve --port 8000

Exit codes: 0 ok, 1 the command failed, 2 invalid configuration.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from ..data.config import ConfigError, Settings, load_settings
from ..data.review_models import SyncStatus
from ..data.review_store import PersistFailedError, ReviewStore
from ..notifications.telegram_notifier import TelegramNotifier
from .logging_config import setup_logging
from .reports import AdminReporter
from .scheduler import ReviewScheduler
from .state import RunState
from .sync_cycle import CycleStatus, create_orchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _reporter(settings: Settings, store: ReviewStore, state: Optional[RunState] = None) -> AdminReporter:
    """Reporter for the admin chat; the daemon passes the orchestrator's RunState."""
    return AdminReporter(
        store=store,
        notifier=TelegramNotifier.from_config(settings.telegram),
        state=state or RunState(settings.state_dir),
        admin_chat_id=settings.telegram.admin_chat_id,
        timezone_name=settings.schedule.timezone,
    )


def cmd_run(args, settings: Settings) -> int:
    """Run one sync cycle and print the per-target outcomes."""
    with ReviewStore(settings.database) as store:
        orchestrator = create_orchestrator(settings, store)
        result = orchestrator.run_cycle()

    print("=" * 60)
    print("REVIEW SYNC")
    print("=" * 60)
    print(f"Status: {result.status.value}")
    print(f"Duration: {result.duration_seconds or 0:.1f} seconds")
    print(f"New reviews: {result.inserted_total}")
    print()
    for outcome in result.outcomes:
        icon = "✗" if outcome.status == SyncStatus.ERROR else "✓"
        print(f"  {icon} {outcome.target.display_name}: {outcome.status.value} "
              f"(fetched {outcome.fetched}, inserted {outcome.inserted_count})")
        if outcome.status == SyncStatus.ERROR:
            print(f"      {outcome.message}")

    if args.json:
        print()
        print(json.dumps(result.get_summary(), indent=2, default=str))

    # Individual target errors are reported, not fatal
    if result.status in (CycleStatus.FAILED, CycleStatus.SKIPPED) and not result.outcomes:
        return EXIT_FAILED
    return EXIT_OK


def cmd_daemon(args, settings: Settings) -> int:
    """Start the blocking scheduler."""
    with ReviewStore(settings.database) as store:
        orchestrator = create_orchestrator(settings, store)
        reporter = _reporter(settings, store, state=orchestrator.state)
        scheduler = ReviewScheduler(settings.schedule, orchestrator, reporter)
        scheduler.start(blocking=True, run_now=args.force)
    return EXIT_OK


def cmd_heartbeat(args, settings: Settings) -> int:
    with ReviewStore(settings.database) as store:
        sent = _reporter(settings, store).send_heartbeat()
    return EXIT_OK if sent else EXIT_FAILED


def cmd_summary(args, settings: Settings) -> int:
    with ReviewStore(settings.database) as store:
        sent = _reporter(settings, store).send_weekly_summary(days=args.days)
    return EXIT_OK if sent else EXIT_FAILED


def cmd_status(args, settings: Settings) -> int:
    """Show the persisted run state."""
    summary = RunState(settings.state_dir).get_summary()

    if args.json:
        print(json.dumps(summary, indent=2, default=str))
        return EXIT_OK

    last_ok = summary.get("last_successful_cycle") or {}
    last = summary.get("last_cycle") or {}
    print("=" * 60)
    print("PLACEWATCH STATUS")
    print("=" * 60)
    print(f"Last cycle: {last.get('status', 'N/A')} at {last.get('completed_at', 'N/A')}")
    print(f"Last successful cycle: {last_ok.get('completed_at', 'N/A')}")
    print(f"Consecutive failures: {summary['consecutive_failures']}")
    if summary["was_interrupted"]:
        print("⚠ A cycle was interrupted before finishing")
    return EXIT_OK


def cmd_init_db(args, settings: Settings) -> int:
    with ReviewStore(settings.database) as store:
        store.ensure_schema()
    print("Database schema ready")
    return EXIT_OK


def cmd_serve(args, settings: Settings) -> int:
    """Run the dashboard API with uvicorn."""
    import uvicorn

    uvicorn.run("placewatch.api.main:app", host=args.host, port=args.port, log_config=None)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="placewatch",
        description="Google review sync and Telegram notifications",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Run one sync cycle now")
    run_parser.add_argument("--json", action="store_true", help="Print the cycle result as JSON")

    daemon_parser = subparsers.add_parser("daemon", help="Start the scheduler")
    daemon_parser.add_argument("--force", action="store_true", help="Also run one cycle immediately")

    subparsers.add_parser("heartbeat", help="Send the admin heartbeat now")

    summary_parser = subparsers.add_parser("summary", help="Send the weekly summary now")
    summary_parser.add_argument("--days", type=int, default=7, help="Days covered (default: 7)")

    status_parser = subparsers.add_parser("status", help="Show persisted run state")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    subparsers.add_parser("init-db", help="Create tables and indexes")

    serve_parser = subparsers.add_parser("serve", help="Run the dashboard API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


COMMANDS = {
    "run": cmd_run,
    "daemon": cmd_daemon,
    "heartbeat": cmd_heartbeat,
    "summary": cmd_summary,
    "status": cmd_status,
    "init-db": cmd_init_db,
    "serve": cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_FAILED

    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(
        level="DEBUG" if args.verbose else settings.logging.level,
        json_output=settings.logging.json_logs,
        log_file=settings.logging.log_file,
    )

    try:
        return COMMANDS[args.command](args, settings)
    except PersistFailedError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FAILED
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG


if __name__ == "__main__":
    sys.exit(main())
