# leadenrich/routes/monitoring.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from leadenrich.core.exceptions import NotFoundError
from leadenrich.core.logging import get_structlog_logger
from leadenrich.db.session import get_session
from leadenrich.models.lead import Lead
from leadenrich.runtime import Runtime, get_runtime
from leadenrich.services.scoring_engine import ScoringInput
from leadenrich.services.stats import job_statistics, lead_statistics

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


class LeadStats(BaseModel):
    total: int
    processed: int
    pending: int
    high_potential: int
    by_status: Dict[str, int]
    by_tier: Dict[str, int]
    by_region: Dict[str, int]


class QueueStats(BaseModel):
    waiting: int
    delayed: int
    active: int
    completed: int
    failed: int


class JobStats(BaseModel):
    total_jobs: int
    pending: int
    processing: int
    completed: int
    failed: int
    queue: Optional[QueueStats] = None


class RateLimitStats(BaseModel):
    remaining: int
    reset_in_ms: int
    blocked: bool


class ScoreFactorOut(BaseModel):
    factor: str
    points: int
    description: str


class ScoreDetailsOut(BaseModel):
    lead_id: int
    total_score: int
    tier: str
    factors: List[ScoreFactorOut]
    confidence: int


@router.get("/leads/stats", response_model=LeadStats)
async def get_lead_stats(session: AsyncSession = Depends(get_session)):
    return await lead_statistics(session)


@router.get("/jobs/stats", response_model=JobStats)
async def get_job_stats(
    session: AsyncSession = Depends(get_session),
    runtime: Runtime = Depends(get_runtime),
):
    return await job_statistics(session, runtime.queue)


@router.get("/rate-limit", response_model=RateLimitStats)
async def get_rate_limit(runtime: Runtime = Depends(get_runtime)):
    current = await runtime.rate_limiter.status()
    if current.blocked:
        logger.info("rate_limiter.status_blocked", reset_in_ms=current.reset_in_ms)
    return current.to_dict()


@router.get("/queue/dead-letters")
async def get_dead_letters(
    limit: int = Query(100, ge=1, le=1000),
    runtime: Runtime = Depends(get_runtime),
) -> Dict[str, Any]:
    entries = await runtime.queue.dead_letters(limit)
    return {"total": len(entries), "jobs": entries}


@router.get("/leads/{lead_id}/score-details", response_model=ScoreDetailsOut)
async def get_score_details(
    lead_id: int,
    session: AsyncSession = Depends(get_session),
    runtime: Runtime = Depends(get_runtime),
):
    """Per-category breakdown of a lead under the active configuration."""
    lead = await session.get(Lead, lead_id)
    if lead is None:
        raise NotFoundError(
            message=f"Lead with id={lead_id} not found",
            code="lead_not_found",
            details={"lead_id": lead_id},
        )

    details = await runtime.scoring_service.get_score_details(ScoringInput.from_lead(lead))
    return {"lead_id": lead_id, **details.to_dict()}
