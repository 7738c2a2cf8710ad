#!/usr/bin/env python3
"""CLI entry point for the lead automation service.

Usage:
    leadflow serve --port 8080
    leadflow init-db
    leadflow run-task --task-id task-0123456789abcdef
    leadflow enrich --user-id USER --type full_enrichment LEAD_ID [LEAD_ID ...]
    leadflow usage --user-id USER --start-date 2026-01-01

Example:
    # Draft briefings for two leads and print per-lead results
    leadflow --verbose enrich --user-id u-1 --type precall_generation lead-1 lead-2
"""

import argparse
import asyncio
import json
import logging
import secrets
import sys
from datetime import datetime
from typing import Optional

from .config import ConfigError, config
from .logging_utils import setup_logging
from .models import AutomationTask, TaskPriority, TaskStatus, TaskType, utcnow
from .models.database import close_database, init_database
from .orchestrator import TaskResult, build_orchestrator
from .store import LeadStore
from .utils import parse_report_date

logger = logging.getLogger(__name__)


def progress_callback(current: int, total: int, succeeded: int, failed: int) -> None:
    """Display batch progress on a single terminal line."""
    if total > 0:
        percent = (current / total) * 100
        bar_length = 30
        filled = int(bar_length * current / total)
        bar = "█" * filled + "░" * (bar_length - filled)
        print(
            f"\r[{bar}] {percent:5.1f}% ({current}/{total}, {failed} failed)",
            end="",
            flush=True,
        )


def print_task_result(result: TaskResult, verbose: bool = False) -> None:
    """Print a dispatched task's outcome."""
    print("\n" + "=" * 60)
    print("TASK RESULT")
    print("=" * 60)

    ok = result.status == TaskStatus.COMPLETED
    symbol = "✓" if ok else "✗"
    print(f"\nStatus: [{symbol}] {result.status.value.upper()}")
    print(f"Task ID: {result.task_id}")
    print(f"Type: {result.task_type}")
    print(f"Duration: {result.duration_seconds:.1f} seconds")

    print("\nLead Statistics:")
    print(f"  Total: {result.total}")
    print(f"  Succeeded: {result.succeeded}")
    print(f"  Failed: {result.failed}")
    if result.error:
        print(f"\nError: {result.error}")

    if verbose and result.results:
        print("\nLead Details:")
        print("-" * 40)
        for lr in result.results:
            symbol = "✓" if lr.success else "✗"
            stages = ", ".join(
                name
                for name, done in (
                    ("enriched", lr.enriched),
                    ("briefed", lr.briefed),
                    ("emailed", lr.emailed),
                )
                if done
            )
            print(f"  [{symbol}] {lr.lead_id}: {stages or lr.error or '-'}")

    print("\n" + "=" * 60)


def parse_date(value: str, end_of_day: bool = False) -> datetime:
    try:
        return parse_report_date(value, end_of_day=end_of_day)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date: {value}, use RFC 3339 or YYYY-MM-DD")


def parse_end_date(value: str) -> datetime:
    return parse_date(value, end_of_day=True)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="leadflow",
        description="Lead enrichment, pre-call briefing and cold email automation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the webhook server")
    serve.add_argument("--host", default=config.API_HOST, help="Bind address")
    serve.add_argument("--port", type=int, default=config.PORT, help="Bind port")

    commands.add_parser("init-db", help="Create database tables")

    run_task = commands.add_parser("run-task", help="Dispatch a stored task inline")
    run_task.add_argument("--task-id", required=True, help="Task to dispatch")

    enrich = commands.add_parser("enrich", help="Create and run a batch task")
    enrich.add_argument("--user-id", required=True, help="Owning user")
    enrich.add_argument(
        "--type",
        dest="task_type",
        choices=[t.value for t in TaskType],
        default=TaskType.FULL_ENRICHMENT.value,
        help="Task type (default: full_enrichment)",
    )
    enrich.add_argument("--business-profile-id", default=None, help="Sender profile")
    enrich.add_argument("lead_ids", nargs="+", metavar="LEAD_ID", help="Leads to process")

    usage = commands.add_parser("usage", help="Print a usage report")
    usage.add_argument("--user-id", required=True, help="User to report on")
    usage.add_argument("--start-date", type=parse_date, default=None)
    usage.add_argument("--end-date", type=parse_end_date, default=None)

    return parser


async def run_task(args: argparse.Namespace) -> Optional[TaskResult]:
    store = LeadStore()
    task = await store.get_task(args.task_id)
    if task is None:
        print(f"Error: task not found: {args.task_id}")
        return None

    orchestrator = build_orchestrator(
        store, progress_callback=None if args.debug else progress_callback
    )
    return await orchestrator.dispatch(task)


async def run_enrich(args: argparse.Namespace) -> Optional[TaskResult]:
    task = AutomationTask(
        id=f"task-{secrets.token_hex(8)}",
        user_id=args.user_id,
        task_type=args.task_type,
        lead_id=None,
        lead_ids=list(args.lead_ids),
        business_profile_id=args.business_profile_id,
        priority=int(TaskPriority.LOW),
        status=TaskStatus.PENDING,
        items_total=len(args.lead_ids),
        max_retries=config.STAGE_MAX_RETRIES,
        created_at=utcnow(),
    )
    store = LeadStore()
    await store.create_task(task)

    orchestrator = build_orchestrator(
        store, progress_callback=None if args.debug else progress_callback
    )
    print(f"Running {args.task_type} for {len(args.lead_ids)} leads (task {task.id})...")
    return await orchestrator.dispatch(task)


async def run_usage(args: argparse.Namespace) -> dict:
    store = LeadStore()
    summary = await store.get_usage_summary(args.user_id, args.start_date, args.end_date)
    return {"user_id": args.user_id, **summary.to_dict()}


async def _with_database(coro):
    try:
        return await coro
    finally:
        await close_database()


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    level = "DEBUG" if args.debug else ("INFO" if args.verbose else None)
    setup_logging(level=level)

    if args.command == "serve":
        import uvicorn

        logger.info("Starting automation service on %s:%d", args.host, args.port)
        uvicorn.run("leadflow.api:app", host=args.host, port=args.port, log_config=None)
        return 0

    try:
        config.validate_for_database()
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    try:
        if args.command == "init-db":
            asyncio.run(_with_database(init_database()))
            print("Database tables created.")
            return 0

        if args.command == "usage":
            report = asyncio.run(_with_database(run_usage(args)))
            print(json.dumps(report, indent=2, default=str))
            return 0

        runner = run_task if args.command == "run-task" else run_enrich
        result = asyncio.run(_with_database(runner(args)))
    except KeyboardInterrupt:
        print("\n\nCancelled by user.")
        return 130
    except Exception as e:
        logger.exception("Command %s failed", args.command)
        print(f"\nError: {e}")
        return 1

    print("\r" + " " * 80 + "\r", end="")
    if result is None:
        print("Task was not processed (missing or already claimed).")
        return 1

    print_task_result(result, verbose=args.verbose)
    return 0 if result.status == TaskStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
