import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy import select

from leadenrich.models.enums import CategoryType, LeadStatus, ScoreTier
from leadenrich.models.lead import Lead
from leadenrich.schemas.scoring_config import CategoryInput, CriterionInput, ScoringConfigInput
from leadenrich.services.recalculation import RecalculationCoordinator
from leadenrich.services.scoring_config_store import ScoringConfigStore
from leadenrich.services.scoring_service import ScoringService


@pytest.fixture
def store(session_factory):
    return ScoringConfigStore(session_factory)


@pytest.fixture
def coordinator(session_factory, store, redis_client, sleep):
    return RecalculationCoordinator(
        session_factory,
        ScoringService(store),
        redis_client=redis_client,
        batch_size=2,
        pause_ms=100,
        sleep=sleep,
    )


async def seed_processed(session_factory, count=3, **fields):
    async with session_factory() as session:
        async with session.begin():
            for i in range(count):
                session.add(
                    Lead(
                        tax_id=f"1111111100{i:04d}",
                        activity_code="4721100",
                        region="sudeste",
                        validated_state="SP",
                        validated_street="Avenida Paulista",
                        status=LeadStatus.PROCESSED,
                        score=1,
                        tier=ScoreTier.LOW,
                        **fields,
                    )
                )
            session.add(Lead(tax_id="99999999000199", activity_code="4721100", status=LeadStatus.AWAITING))


async def scores(session_factory):
    async with session_factory() as session:
        rows = await session.execute(select(Lead.tax_id, Lead.score, Lead.tier).order_by(Lead.id))
        return [(tax_id, score, tier) for tax_id, score, tier in rows.all()]


@pytest.mark.asyncio
async def test_recalculation_rescores_processed_leads_only(coordinator, store, session_factory, sleep):
    await store.ensure_default()
    await seed_processed(session_factory)

    result = await coordinator.recalculate()

    assert (result.updated, result.errors) == (3, 0)
    rows = await scores(session_factory)
    # 45 activity + 25 region + 10 address bonus
    assert [row[1:] for row in rows[:3]] == [(80, ScoreTier.HIGH)] * 3
    assert rows[3][1] is None
    # Two batches of two, one pause between them
    assert sleep.calls == [0.1]


@pytest.mark.asyncio
async def test_recalculation_is_idempotent(coordinator, store, session_factory):
    await store.ensure_default()
    await seed_processed(session_factory)

    await coordinator.recalculate()
    first = await scores(session_factory)
    second_result = await coordinator.recalculate()

    assert second_result.updated == 3
    assert await scores(session_factory) == first


@pytest.mark.asyncio
async def test_config_change_triggers_rescoring(coordinator, store, session_factory):
    await store.ensure_default()
    await seed_processed(session_factory)
    await coordinator.recalculate()
    store.add_listener(coordinator.on_config_change)

    await store.create(
        ScoringConfigInput(
            name="Bakeries only",
            categories=[
                CategoryInput(
                    name="Bakery",
                    type=CategoryType.ACTIVITY_CODE,
                    points=30,
                    criteria=[CriterionInput(value="4721100", points=30)],
                )
            ],
        )
    )
    await coordinator.wait_idle()

    rows = await scores(session_factory)
    assert [row[1:] for row in rows[:3]] == [(40, ScoreTier.LOW)] * 3


@pytest.mark.asyncio
async def test_checkpoint_cleared_after_run(coordinator, store, session_factory, redis_client):
    await store.ensure_default()
    await seed_processed(session_factory)

    await coordinator.recalculate()

    assert await redis_client.keys("recalculation:*") == []


@pytest.mark.asyncio
async def test_resumes_after_checkpoint(coordinator, store, session_factory):
    config = await store.ensure_default()
    await seed_processed(session_factory)
    async with session_factory() as session:
        lead_ids = (await session.execute(select(Lead.id).order_by(Lead.id))).scalars().all()

    await coordinator.checkpoints.set(f"checkpoint:{config.id}:{config.version}", lead_ids[0])
    result = await coordinator.recalculate()

    assert result.updated == 2
    rows = await scores(session_factory)
    assert rows[0][1:] == (1, ScoreTier.LOW)
    assert [row[1] for row in rows[1:3]] == [80, 80]


@pytest.mark.asyncio
async def test_lead_failures_are_counted(coordinator, store, session_factory):
    await store.ensure_default()
    await seed_processed(session_factory)
    original = coordinator.scoring_service.score_enriched
    calls = {"n": 0}

    async def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise ValueError("bad lead")
        return await original(*args, **kwargs)

    with patch.object(coordinator.scoring_service, "score_enriched", side_effect=flaky):
        result = await coordinator.recalculate()

    assert (result.updated, result.errors) == (2, 1)


@pytest.mark.asyncio
async def test_triggers_during_a_run_coalesce(coordinator, store, session_factory):
    await store.ensure_default()
    await seed_processed(session_factory)
    runs = []
    gate = asyncio.Event()

    async def slow_recalculate():
        runs.append(len(runs))
        if len(runs) == 1:
            await gate.wait()

    with patch.object(coordinator, "recalculate", side_effect=slow_recalculate):
        first = coordinator.trigger()
        await asyncio.sleep(0)
        assert coordinator.trigger() is first
        assert coordinator.trigger() is first
        gate.set()
        await coordinator.wait_idle()

    assert runs == [0, 1]


@pytest.mark.asyncio
async def test_without_active_config_default_is_materialised(coordinator, store, session_factory):
    await seed_processed(session_factory, count=1)

    result = await coordinator.recalculate()

    assert result.updated == 1
    assert (await store.get_active()).name == "Default Configuration"
    assert (await scores(session_factory))[0][1:] == (80, ScoreTier.HIGH)
