"""
Enrichment worker: runs the job scheduler against the shared Redis queue.
"""
from __future__ import annotations

import asyncio
import signal
import sys
from typing import Optional

from leadenrich.core.config import settings
from leadenrich.core.logging import configure_structlog, get_structlog_logger
from leadenrich.db.session import dispose_engine, get_session_factory
from leadenrich.runtime import build_runtime
from leadenrich.services.redis import close_redis_pool, get_redis_client, init_redis_pool

configure_structlog()
logger = get_structlog_logger()


async def worker_main(max_jobs: Optional[int] = None) -> None:
    """
    Run until SIGINT/SIGTERM, or process at most ``max_jobs`` ready jobs and exit.
    """
    logger.info("enrichment_worker.starting", concurrency=settings.scheduler_concurrency)

    await init_redis_pool()
    redis_client = await get_redis_client()
    runtime = build_runtime(redis_client, get_session_factory())
    await runtime.scoring_store.ensure_default()

    try:
        if max_jobs is not None:
            processed = await runtime.scheduler.drain(max_jobs)
            logger.info("enrichment_worker.drained", processed=processed)
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

        await runtime.scheduler.start()
        await stop_event.wait()
        logger.info("enrichment_worker.stopping")
        await runtime.scheduler.stop()
        await runtime.recalculation.wait_idle()
    finally:
        await close_redis_pool()
        await dispose_engine()
        logger.info("enrichment_worker.stopped")


def main() -> None:
    max_jobs = int(sys.argv[1]) if len(sys.argv) > 1 else None
    asyncio.run(worker_main(max_jobs))


if __name__ == "__main__":
    main()
