import pytest

from leadenrich.models.enums import JobStatus, LeadStatus, ScoreTier
from leadenrich.models.lead import Lead
from leadenrich.models.processing_job import ProcessingJob
from leadenrich.services.job_queue import LeadJobQueue
from leadenrich.services.stats import job_statistics, lead_statistics


async def seed(session_factory):
    rows = [
        ("11111111000111", LeadStatus.PROCESSED, ScoreTier.HIGH, "SP", JobStatus.COMPLETED),
        ("22222222000122", LeadStatus.PROCESSED, ScoreTier.MEDIUM, "RS", JobStatus.COMPLETED),
        ("33333333000133", LeadStatus.AWAITING, None, None, JobStatus.PENDING),
        ("44444444000144", LeadStatus.ERROR, None, "SP", JobStatus.FAILED),
    ]
    async with session_factory() as session:
        async with session.begin():
            for tax_id, status, tier, state, job_status in rows:
                lead = Lead(tax_id=tax_id, status=status, tier=tier, validated_state=state)
                session.add(lead)
                await session.flush()
                session.add(ProcessingJob(lead_id=lead.id, status=job_status, progress=0))


@pytest.mark.asyncio
async def test_lead_statistics(session_factory, db_session):
    await seed(session_factory)

    stats = await lead_statistics(db_session)

    assert stats["total"] == 4
    assert stats["processed"] == 2
    assert stats["pending"] == 1
    assert stats["high_potential"] == 1
    assert stats["by_status"] == {"processed": 2, "awaiting": 1, "error": 1}
    assert stats["by_tier"] == {"high": 1, "medium": 1}
    assert stats["by_region"] == {"SP": 2, "RS": 1, "unknown": 1}


@pytest.mark.asyncio
async def test_lead_statistics_empty(db_session):
    stats = await lead_statistics(db_session)

    assert stats["total"] == 0
    assert stats["by_tier"] == {}


@pytest.mark.asyncio
async def test_job_statistics_include_queue(session_factory, db_session, redis_client):
    await seed(session_factory)
    queue = LeadJobQueue(redis_client, queue_name="stats_jobs")
    await queue.enqueue(lead_id=3, processing_job_id=3)
    await queue.enqueue(lead_id=5, processing_job_id=5, delay_ms=60000)

    stats = await job_statistics(db_session, queue)

    assert stats["total_jobs"] == 4
    assert (stats["pending"], stats["processing"], stats["completed"], stats["failed"]) == (1, 0, 2, 1)
    assert stats["queue"] == {"waiting": 1, "delayed": 1, "active": 0, "completed": 0, "failed": 0}


@pytest.mark.asyncio
async def test_job_statistics_without_queue(db_session):
    stats = await job_statistics(db_session)

    assert "queue" not in stats
    assert stats["total_jobs"] == 0
