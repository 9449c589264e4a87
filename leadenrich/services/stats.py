# leadenrich/services/stats.py
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leadenrich.models.enums import JobStatus, LeadStatus, ScoreTier
from leadenrich.models.lead import Lead
from leadenrich.models.processing_job import ProcessingJob
from leadenrich.services.job_queue import LeadJobQueue


def _key(value: Any) -> str:
    return getattr(value, "value", value)


async def lead_statistics(session: AsyncSession) -> Dict[str, Any]:
    by_status_rows = await session.execute(select(Lead.status, func.count(Lead.id)).group_by(Lead.status))
    by_status = {_key(status): count for status, count in by_status_rows.all()}

    by_tier_rows = await session.execute(
        select(Lead.tier, func.count(Lead.id)).where(Lead.tier.is_not(None)).group_by(Lead.tier)
    )
    by_tier = {_key(tier): count for tier, count in by_tier_rows.all()}

    state = func.coalesce(Lead.validated_state, "unknown")
    by_region_rows = await session.execute(select(state, func.count(Lead.id)).group_by(state))
    by_region = {region: count for region, count in by_region_rows.all()}

    return {
        "total": sum(by_status.values()),
        "processed": by_status.get(LeadStatus.PROCESSED.value, 0),
        "pending": by_status.get(LeadStatus.AWAITING.value, 0),
        "high_potential": by_tier.get(ScoreTier.HIGH.value, 0),
        "by_status": by_status,
        "by_tier": by_tier,
        "by_region": by_region,
    }


async def job_statistics(session: AsyncSession, queue: Optional[LeadJobQueue] = None) -> Dict[str, Any]:
    rows = await session.execute(
        select(ProcessingJob.status, func.count(ProcessingJob.id)).group_by(ProcessingJob.status)
    )
    by_status = {_key(status): count for status, count in rows.all()}

    stats: Dict[str, Any] = {
        "total_jobs": sum(by_status.values()),
        "pending": by_status.get(JobStatus.PENDING.value, 0),
        "processing": by_status.get(JobStatus.PROCESSING.value, 0),
        "completed": by_status.get(JobStatus.COMPLETED.value, 0),
        "failed": by_status.get(JobStatus.FAILED.value, 0),
    }
    if queue is not None:
        stats["queue"] = (await queue.stats()).to_dict()
    return stats
