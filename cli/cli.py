# cli/cli.py
"""
Command line entry points for the lead enrichment pipeline.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from leadenrich.core.config import settings
from leadenrich.core.logging import configure_structlog
from leadenrich.db.session import dispose_engine, get_session_factory
from leadenrich.runtime import Runtime, build_runtime
from leadenrich.services.redis import close_redis_pool, get_redis_client, init_redis_pool
from leadenrich.services.stats import job_statistics, lead_statistics


def _supports_color() -> bool:
    """Check if terminal supports ANSI color codes."""
    if sys.platform == "win32":
        return os.getenv("TERM") == "xterm" or os.getenv("ANSICON") is not None
    return sys.stdout.isatty()


SUPPORTS_COLOR = _supports_color()

# ANSI color codes
GREEN = '\033[92m' if SUPPORTS_COLOR else ''
RED = '\033[91m' if SUPPORTS_COLOR else ''
YELLOW = '\033[93m' if SUPPORTS_COLOR else ''
BLUE = '\033[94m' if SUPPORTS_COLOR else ''
RESET = '\033[0m' if SUPPORTS_COLOR else ''


def print_success(message: str):
    print(f"{GREEN}[✓]{RESET} {message}")


def print_error(message: str):
    print(f"{RED}[✗]{RESET} {message}")


def print_warning(message: str):
    print(f"{YELLOW}[!]{RESET} {message}")


def print_info(message: str):
    print(f"{BLUE}[i]{RESET} {message}")


def load_records(path: Path) -> List[Dict[str, Any]]:
    """Read raw lead records from a JSON file.

    Accepts either a top-level list or an object with a ``leads`` list.
    """
    with path.open(encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, dict):
        data = data.get("leads", [])
    if not isinstance(data, list):
        raise ValueError("expected a list of lead records")
    return [item for item in data if isinstance(item, dict)]


@asynccontextmanager
async def open_runtime() -> AsyncIterator[Runtime]:
    await init_redis_pool()
    try:
        redis_client = await get_redis_client()
        yield build_runtime(redis_client, get_session_factory())
    finally:
        await close_redis_pool()
        await dispose_engine()


async def cmd_ingest(args: argparse.Namespace) -> int:
    """Command: Import raw leads from a JSON file."""
    path = Path(args.file)
    if not path.exists():
        print_error(f"File not found: {path}")
        return 1

    records = load_records(path)
    print_info(f"Importing {len(records)} records from {path}...")

    async with open_runtime() as runtime:
        result = await runtime.ingestion.ingest(records)

    print_success(f"Created {result.created} leads")
    if result.skipped:
        print_warning(f"Skipped {result.skipped} records (invalid or duplicate)")
    return 0


async def cmd_worker(args: argparse.Namespace) -> int:
    """Command: Process queued jobs."""
    async with open_runtime() as runtime:
        await runtime.scoring_store.ensure_default()

        if args.max_jobs is not None:
            processed = await runtime.scheduler.drain(args.max_jobs)
            print_success(f"Processed {processed} jobs")
            return 0

        print_info(f"Worker running with concurrency {settings.scheduler_concurrency} (Ctrl+C to stop)")
        await runtime.scheduler.start()
        try:
            while runtime.scheduler.running:
                await asyncio.sleep(1)
        finally:
            await runtime.scheduler.stop()
    return 0


async def cmd_recalculate(args: argparse.Namespace) -> int:
    """Command: Rescore every processed lead with the active configuration."""
    print_info("Recalculating scores...")
    async with open_runtime() as runtime:
        result = await runtime.recalculation.recalculate()

    print_success(f"Updated {result.updated} leads")
    if result.errors:
        print_warning(f"{result.errors} leads failed to rescore")
        return 1
    return 0


async def cmd_stats(args: argparse.Namespace) -> int:
    """Command: Print lead and job statistics."""
    async with open_runtime() as runtime:
        async with runtime.session_factory() as session:
            leads = await lead_statistics(session)
            jobs = await job_statistics(session, runtime.queue)

    if args.json:
        print(json.dumps({"leads": leads, "jobs": jobs}, indent=2))
        return 0

    print_info(f"Leads: {leads['total']} total, {leads['processed']} processed, {leads['pending']} awaiting")
    print_info(f"High potential: {leads['high_potential']}")
    for status, count in sorted(leads["by_status"].items()):
        print(f"  {status}: {count}")
    print_info(f"Jobs: {jobs['total_jobs']} total, {jobs['failed']} failed")
    queue = jobs.get("queue") or {}
    print_info(
        "Queue: {waiting} waiting, {delayed} delayed, {active} active, "
        "{completed} completed, {failed} dead".format(**queue)
    )
    return 0


async def cmd_rate_limit(args: argparse.Namespace) -> int:
    """Command: Show the registry rate limit window."""
    async with open_runtime() as runtime:
        current = await runtime.rate_limiter.status()

    if current.blocked:
        print_warning(f"Blocked, window resets in {current.reset_in_ms} ms")
    else:
        print_success(f"{current.remaining} requests remaining")
    return 0


async def cmd_cleanup_jobs(args: argparse.Namespace) -> int:
    """Command: Delete completed processing jobs past retention."""
    days = args.days if args.days is not None else settings.completed_job_retention_days
    async with open_runtime() as runtime:
        removed = await runtime.tracker.cleanup_completed(older_than_days=days)

    print_success(f"Removed {removed} completed jobs older than {days} days")
    return 0


async def cmd_recover_stalled(args: argparse.Namespace) -> int:
    """Command: Requeue jobs whose worker stopped responding."""
    timeout_ms = int(settings.scheduler_visibility_timeout_seconds * 1000)
    async with open_runtime() as runtime:
        recovered = await runtime.queue.recover_stalled(timeout_ms)

    print_success(f"Requeued {recovered} stalled jobs")
    return 0


# Command registry
COMMANDS: Dict[str, Callable] = {
    'ingest': cmd_ingest,
    'worker': cmd_worker,
    'recalculate': cmd_recalculate,
    'stats': cmd_stats,
    'rate-limit': cmd_rate_limit,
    'cleanup-jobs': cmd_cleanup_jobs,
    'recover-stalled': cmd_recover_stalled,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with all commands."""
    parser = argparse.ArgumentParser(
        description='Lead enrichment pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    ingest_parser = subparsers.add_parser('ingest', help='Import raw leads from a JSON file')
    ingest_parser.add_argument('file', help='Path to a JSON list of lead records')

    worker_parser = subparsers.add_parser('worker', help='Process queued jobs')
    worker_parser.add_argument('--max-jobs', type=int, default=None, help='Drain at most N ready jobs and exit')

    subparsers.add_parser('recalculate', help='Rescore processed leads')

    stats_parser = subparsers.add_parser('stats', help='Lead and job statistics')
    stats_parser.add_argument('--json', action='store_true', help='Print raw JSON')

    subparsers.add_parser('rate-limit', help='Registry rate limit status')

    cleanup_parser = subparsers.add_parser('cleanup-jobs', help='Delete old completed jobs')
    cleanup_parser.add_argument('--days', type=int, default=None, help='Retention in days')

    subparsers.add_parser('recover-stalled', help='Requeue stalled jobs')

    return parser


def main(args: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    command_func = COMMANDS.get(parsed_args.command)
    if not command_func:
        print_error(f"Unknown command: {parsed_args.command}")
        parser.print_help()
        return 1

    configure_structlog()
    try:
        return asyncio.run(command_func(parsed_args))
    except KeyboardInterrupt:
        print_error("\nInterrupted by user")
        return 130
    except Exception as e:
        print_error(f"Error executing command: {str(e)}")
        if os.getenv('DEBUG'):
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
