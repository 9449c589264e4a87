import asyncio

import pytest
from sqlalchemy import func, select

from leadenrich.models.enums import CategoryType
from leadenrich.models.scoring_config import ScoringConfig
from leadenrich.schemas.scoring_config import (
    CategoryInput,
    CriterionInput,
    ScoringConfigInput,
    ScoringConfigUpdate,
)
from leadenrich.services.scoring_config_store import DEFAULT_CONFIG_NAME, ScoringConfigStore


def region_config(name: str, points: int = 30) -> ScoringConfigInput:
    return ScoringConfigInput(
        name=name,
        categories=[
            CategoryInput(
                name="Regions",
                type=CategoryType.REGION,
                points=points,
                criteria=[CriterionInput(value="sul", points=points)],
            )
        ],
    )


async def active_count(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(ScoringConfig.id)).where(ScoringConfig.is_active.is_(True))
        )
        return result.scalar_one()


@pytest.mark.asyncio
async def test_ensure_default_creates_default_config(session_factory):
    store = ScoringConfigStore(session_factory)

    config = await store.ensure_default()

    assert config.name == DEFAULT_CONFIG_NAME
    assert config.is_active is True
    assert len(config.categories) == 8
    assert config.categories[0].criteria[0].value == "4721100"


@pytest.mark.asyncio
async def test_ensure_default_is_idempotent(session_factory):
    store = ScoringConfigStore(session_factory)

    first = await store.ensure_default()
    second = await store.ensure_default()

    assert first.id == second.id
    assert len(await store.list_all()) == 1


@pytest.mark.asyncio
async def test_ensure_default_reactivates_existing_default(session_factory):
    store = ScoringConfigStore(session_factory)
    default = await store.ensure_default()
    other = await store.create(region_config("Regional"))
    await store.update(other.id, ScoringConfigUpdate(is_active=False))

    config = await store.ensure_default()

    assert config.id == default.id
    assert len(await store.list_all()) == 2


@pytest.mark.asyncio
async def test_create_makes_new_config_the_only_active(session_factory):
    store = ScoringConfigStore(session_factory)
    await store.ensure_default()

    created = await store.create(region_config("Regional"))

    active = await store.get_active()
    assert active.id == created.id
    assert await active_count(session_factory) == 1


@pytest.mark.asyncio
async def test_activate_switches_active_config(session_factory):
    store = ScoringConfigStore(session_factory)
    default = await store.ensure_default()
    await store.create(region_config("Regional"))

    await store.activate(default.id)

    assert (await store.get_active()).id == default.id
    assert await active_count(session_factory) == 1


@pytest.mark.asyncio
async def test_concurrent_activations_leave_one_active(session_factory):
    store = ScoringConfigStore(session_factory)
    first = await store.create(region_config("First"))
    second = await store.create(region_config("Second"))
    third = await store.create(region_config("Third"))

    await asyncio.gather(
        store.activate(first.id),
        store.activate(second.id),
        store.activate(third.id),
        return_exceptions=True,
    )

    assert await active_count(session_factory) == 1


@pytest.mark.asyncio
async def test_repeated_concurrent_activations_always_leave_one_active(session_factory):
    store = ScoringConfigStore(session_factory)
    configs = [await store.create(region_config(name)) for name in ("First", "Second", "Third")]

    for _ in range(10):
        await asyncio.gather(*(store.activate(config.id) for config in configs), return_exceptions=True)
        assert await active_count(session_factory) == 1


@pytest.mark.asyncio
async def test_activating_the_active_config_keeps_it_active(session_factory):
    store = ScoringConfigStore(session_factory)
    first = await store.create(region_config("First"))
    second = await store.create(region_config("Second"))

    await store.activate(second.id)
    await asyncio.gather(store.activate(second.id), store.activate(first.id), return_exceptions=True)

    assert await active_count(session_factory) == 1


@pytest.mark.asyncio
async def test_update_replaces_categories_and_bumps_version(session_factory):
    store = ScoringConfigStore(session_factory)
    created = await store.create(region_config("Regional", points=30))

    updated = await store.update(
        created.id,
        ScoringConfigUpdate(
            name="Regional v2",
            categories=[
                CategoryInput(
                    name="Capital",
                    type=CategoryType.CAPITAL,
                    points=10,
                    criteria=[CriterionInput(value="high", points=10)],
                )
            ],
        ),
    )

    reloaded = await store.get(created.id)
    assert updated.version == 2
    assert reloaded.name == "Regional v2"
    assert [c.name for c in reloaded.categories] == ["Capital"]
    assert reloaded.categories[0].criteria[0].value == "high"


@pytest.mark.asyncio
async def test_update_activation_racing_activate_leaves_one_active(session_factory):
    store = ScoringConfigStore(session_factory)
    first = await store.create(region_config("First"))
    second = await store.create(region_config("Second"))

    for _ in range(5):
        await asyncio.gather(
            store.update(first.id, ScoringConfigUpdate(is_active=True)),
            store.activate(second.id),
            return_exceptions=True,
        )
        assert await active_count(session_factory) == 1


@pytest.mark.asyncio
async def test_update_missing_config_returns_none(session_factory):
    store = ScoringConfigStore(session_factory)

    assert await store.update(999, ScoringConfigUpdate(name="x")) is None
    assert await store.activate(999) is None
    assert await store.delete(999) is False


@pytest.mark.asyncio
async def test_listeners_only_hear_changes_to_the_active_config(session_factory):
    store = ScoringConfigStore(session_factory)
    heard = []

    async def listener(change):
        heard.append(change.action)

    store.add_listener(listener)
    active = await store.create(region_config("Active"))
    await store.create(region_config("Newer"))
    await store.update(active.id, ScoringConfigUpdate(description="now inactive"))
    await store.delete(active.id)

    assert heard == ["created", "created"]


@pytest.mark.asyncio
async def test_delete_active_config_notifies(session_factory):
    store = ScoringConfigStore(session_factory)
    heard = []

    async def listener(change):
        heard.append((change.action, change.affects_active))

    created = await store.create(region_config("Only"))
    store.add_listener(listener)

    assert await store.delete(created.id) is True
    assert await store.get_active() is None
    assert heard == [("deleted", True)]
