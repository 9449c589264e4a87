# leadenrich/services/job_tracker.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadenrich.core.logging import get_structlog_logger
from leadenrich.models.enums import JobStatus, LeadStatus
from leadenrich.models.lead import Lead
from leadenrich.models.processing_job import ProcessingJob

logger = get_structlog_logger(__name__)

STEP_ADDRESS = "address_validation"
STEP_COMPANY = "company_enrichment"
STEP_SCORING = "potential_calculation"
STEP_PERSIST = "persisting"
STEP_FINALIZING = "finalizing"


def step_for_progress(progress: int) -> str:
    if progress <= 25:
        return STEP_ADDRESS
    if progress <= 50:
        return STEP_COMPANY
    if progress <= 75:
        return STEP_SCORING
    return STEP_FINALIZING


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobTracker:
    """Persists ProcessingJob transitions so observers can poll job state."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def mark_processing(self, processing_job_id: int, lead_id: int, attempt: int) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                # Progress restarts with every attempt
                await session.execute(
                    update(ProcessingJob)
                    .where(ProcessingJob.id == processing_job_id)
                    .values(
                        status=JobStatus.PROCESSING,
                        progress=0,
                        current_step=None,
                        attempts=attempt,
                        started_at=_utcnow(),
                        error=None,
                    )
                )
                await session.execute(
                    update(Lead)
                    .where(Lead.id == lead_id)
                    .values(status=LeadStatus.PROCESSING, processing_error=None)
                )

        logger.info("job.processing", processing_job_id=processing_job_id, lead_id=lead_id, attempt=attempt)

    async def update_progress(self, processing_job_id: int, progress: int, step: Optional[str] = None) -> None:
        progress = max(0, min(100, progress))
        step = step or step_for_progress(progress)

        async with self.session_factory() as session:
            async with session.begin():
                # Never move backwards within an attempt
                await session.execute(
                    update(ProcessingJob)
                    .where(
                        ProcessingJob.id == processing_job_id,
                        ProcessingJob.progress <= progress,
                    )
                    .values(progress=progress, current_step=step)
                )

        logger.info("job.progress", processing_job_id=processing_job_id, progress=progress, step=step)

    async def mark_completed(self, processing_job_id: int, lead_id: int) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Lead)
                    .where(Lead.id == lead_id)
                    .values(status=LeadStatus.PROCESSED, processing_error=None)
                )
                await session.execute(
                    update(ProcessingJob)
                    .where(ProcessingJob.id == processing_job_id)
                    .values(
                        status=JobStatus.COMPLETED,
                        progress=100,
                        current_step=STEP_FINALIZING,
                        completed_at=_utcnow(),
                        error=None,
                    )
                )

    async def mark_retrying(self, processing_job_id: int, error: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ProcessingJob)
                    .where(ProcessingJob.id == processing_job_id)
                    .values(status=JobStatus.PENDING, error=error)
                )

    async def mark_failed(self, processing_job_id: int, lead_id: int, error: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ProcessingJob)
                    .where(ProcessingJob.id == processing_job_id)
                    .values(status=JobStatus.FAILED, completed_at=_utcnow(), error=error)
                )
                await session.execute(
                    update(Lead)
                    .where(Lead.id == lead_id)
                    .values(status=LeadStatus.ERROR, processing_error=error)
                )

        logger.error("job.failed", processing_job_id=processing_job_id, lead_id=lead_id, error=error)

    async def cleanup_completed(self, older_than_days: int = 7) -> int:
        """Delete completed jobs finished before the retention window."""
        cutoff = _utcnow() - timedelta(days=older_than_days)
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(ProcessingJob).where(
                        ProcessingJob.status == JobStatus.COMPLETED,
                        ProcessingJob.completed_at < cutoff,
                    )
                )

        deleted = result.rowcount or 0
        logger.info("job.cleanup", deleted=deleted, older_than_days=older_than_days)
        return deleted
