# leadenrich/services/job_scheduler.py
from __future__ import annotations

import asyncio
from typing import List, Optional

from leadenrich.core.logging import bind_job_context, clear_job_context, get_structlog_logger
from leadenrich.services.job_queue import LeadJobQueue, QueuedJob
from leadenrich.services.job_tracker import JobTracker
from leadenrich.services.lead_pipeline import LeadPipeline

logger = get_structlog_logger(__name__)


class JobScheduler:
    """Bounded worker pool over the lead job queue.

    Each of ``concurrency`` workers runs one pipeline at a time. Exceptions
    escaping the pipeline are job failures: the queue retries them with
    backoff and, once attempts are exhausted, the lead is marked as error.
    """

    def __init__(
        self,
        queue: LeadJobQueue,
        pipeline: LeadPipeline,
        tracker: JobTracker,
        concurrency: int = 5,
        poll_interval: float = 1.0,
        visibility_timeout_seconds: int = 3600,
        maintenance_interval: float = 60.0,
        completed_retention_days: int = 7,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.queue = queue
        self.pipeline = pipeline
        self.tracker = tracker
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.visibility_timeout_ms = visibility_timeout_seconds * 1000
        self.maintenance_interval = maintenance_interval
        self.completed_retention_days = completed_retention_days
        self._tasks: List[asyncio.Task] = []
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()

        recovered = await self.queue.recover_stalled(self.visibility_timeout_ms)
        logger.info("scheduler.started", concurrency=self.concurrency, recovered=recovered)

        self._tasks = [
            asyncio.create_task(self._worker_loop(worker_id), name=f"lead-worker-{worker_id}")
            for worker_id in range(self.concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._maintenance_loop(), name="lead-maintenance"))

    async def stop(self, timeout: float = 30.0) -> None:
        """Let in-flight jobs finish, then cancel whatever is left."""
        if not self._tasks:
            return
        self._stopping.set()

        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._tasks = []
        logger.info("scheduler.stopped", cancelled=len(pending))

    async def process_one(self) -> bool:
        """Claim and run one ready job. Returns False when nothing is ready."""
        job = await self.queue.claim_next()
        if job is None:
            return False
        await self._handle(job)
        return True

    async def drain(self, max_jobs: Optional[int] = None) -> int:
        """Run ready jobs in the current task until none are ready."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if not await self.process_one():
                break
            processed += 1
        return processed

    async def _handle(self, job: QueuedJob) -> None:
        bind_job_context(job_id=job.job_id, lead_id=job.lead_id, attempt=job.attempts)
        try:
            await self.tracker.mark_processing(job.processing_job_id, job.lead_id, job.attempts)
            await self.pipeline.run(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.exception("job.attempt_failed", error=message)
            retried = await self.queue.fail(job, message)
            if retried:
                await self.tracker.mark_retrying(job.processing_job_id, message)
            else:
                await self.tracker.mark_failed(job.processing_job_id, job.lead_id, message)
        else:
            await self.queue.complete(job)
        finally:
            clear_job_context()

    async def _wait_or_stop(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _worker_loop(self, worker_id: int) -> None:
        logger.debug("scheduler.worker_started", worker_id=worker_id)
        while not self._stopping.is_set():
            try:
                handled = await self.process_one()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("scheduler.worker_error", worker_id=worker_id, error=str(e))
                handled = False

            if not handled:
                await self._wait_or_stop(self.poll_interval)

    async def _maintenance_loop(self) -> None:
        while not self._stopping.is_set():
            await self._wait_or_stop(self.maintenance_interval)
            if self._stopping.is_set():
                break
            try:
                await self.queue.recover_stalled(self.visibility_timeout_ms)
                await self.tracker.cleanup_completed(self.completed_retention_days)
            except Exception as e:
                logger.error("scheduler.maintenance_error", error=str(e))
