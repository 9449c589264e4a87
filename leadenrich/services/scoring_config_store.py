# leadenrich/services/scoring_config_store.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadenrich.core.exceptions import ConflictError
from leadenrich.core.logging import get_structlog_logger
from leadenrich.models.enums import CategoryType
from leadenrich.models.scoring_config import ScoringCategory, ScoringConfig, ScoringCriterion
from leadenrich.schemas.scoring_config import (
    CategoryInput,
    CriterionInput,
    ScoringConfigInput,
    ScoringConfigUpdate,
)

logger = get_structlog_logger(__name__)

DEFAULT_CONFIG_NAME = "Default Configuration"

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
ACTIVATED = "activated"


@dataclass(frozen=True)
class ConfigChange:
    action: str
    config_id: int
    affects_active: bool


ConfigListener = Callable[[ConfigChange], Awaitable[None]]


def default_config_input() -> ScoringConfigInput:
    return ScoringConfigInput(
        name=DEFAULT_CONFIG_NAME,
        description="Default lead scoring configuration",
        categories=[
            CategoryInput(
                name="High-potential activity codes",
                description="Food retail and bakery activities",
                type=CategoryType.ACTIVITY_CODE,
                points=45,
                criteria=[
                    CriterionInput(value="4721100", label="Bakery and confectionery retail", points=45),
                    CriterionInput(value="4721102", label="Bakery with predominant resale", points=45),
                ],
            ),
            CategoryInput(
                name="Medium-potential activity codes",
                description="Food manufacturing activities",
                type=CategoryType.ACTIVITY_CODE,
                points=25,
                criteria=[
                    CriterionInput(value="1091102", label="Bakery with predominant own production", points=25),
                    CriterionInput(value="1053800", label="Ice cream manufacturing", points=25),
                    CriterionInput(value="1093701", label="Cocoa and chocolate products", points=25),
                ],
            ),
            CategoryInput(
                name="High-potential regions",
                description="Regions with the highest consumption",
                type=CategoryType.REGION,
                points=25,
                criteria=[
                    CriterionInput(value="sudeste", label="Southeast", points=25),
                    CriterionInput(value="sul", label="South", points=25),
                ],
            ),
            CategoryInput(
                name="Medium-potential regions",
                description="Regions with medium consumption",
                type=CategoryType.REGION,
                points=10,
                criteria=[
                    CriterionInput(value="centro-oeste", label="Center-West", points=10),
                    CriterionInput(value="nordeste", label="Northeast", points=10),
                ],
            ),
            CategoryInput(
                name="Registered capital",
                description="Company size by registered capital",
                type=CategoryType.CAPITAL,
                points=8,
                criteria=[
                    CriterionInput(value="high", label="Above 1,000,000", points=8),
                    CriterionInput(value="medium", label="100,000 to 1,000,000", points=5),
                    CriterionInput(value="low", label="10,000 to 100,000", points=3),
                ],
            ),
            CategoryInput(
                name="Company age",
                description="Years since founding",
                type=CategoryType.FOUNDING_AGE,
                points=10,
                criteria=[
                    CriterionInput(value="10+", label="More than 10 years", points=10),
                    CriterionInput(value="5-10", label="5 to 10 years", points=5),
                    CriterionInput(value="2-5", label="2 to 5 years", points=3),
                ],
            ),
            CategoryInput(
                name="Validated address",
                description="Address validated and confirmed",
                type=CategoryType.ADDRESS,
                points=12,
                criteria=[CriterionInput(value="validated", label="Validated", points=12)],
            ),
            CategoryInput(
                name="Partners",
                description="Partners identified in the registry",
                type=CategoryType.PARTNERS,
                points=5,
                criteria=[CriterionInput(value="identified", label="Identified", points=5)],
            ),
        ],
    )


def _build_categories(categories: List[CategoryInput]) -> List[ScoringCategory]:
    return [
        ScoringCategory(
            name=category.name,
            description=category.description,
            type=category.type,
            points=category.points,
            position=index,
            criteria=[
                ScoringCriterion(
                    value=criterion.value,
                    label=criterion.label,
                    points=criterion.points,
                    position=criterion_index,
                )
                for criterion_index, criterion in enumerate(category.criteria)
            ],
        )
        for index, category in enumerate(categories)
    ]


class ScoringConfigStore:
    """Persistence for scoring configurations.

    At most one configuration is active. Activation deactivates every other
    row in the same transaction; a partial unique index backs this up.
    Listeners run after commit for changes that touch the active config.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._listeners: List[ConfigListener] = []

    def add_listener(self, listener: ConfigListener) -> None:
        self._listeners.append(listener)

    async def _notify(self, change: ConfigChange) -> None:
        logger.info(
            "scoring_config.changed",
            action=change.action,
            config_id=change.config_id,
            affects_active=change.affects_active,
        )
        if not change.affects_active:
            return
        for listener in self._listeners:
            await listener(change)

    @staticmethod
    async def _set_active(session: AsyncSession, config_id: int, **values) -> None:
        # Always emits an UPDATE, even when the loaded row already looks active
        await session.execute(
            update(ScoringConfig).where(ScoringConfig.id == config_id).values(is_active=True, **values)
        )

    @staticmethod
    async def _deactivate_others(session: AsyncSession, keep_id: Optional[int] = None) -> None:
        stmt = update(ScoringConfig).where(ScoringConfig.is_active.is_(True))
        if keep_id is not None:
            stmt = stmt.where(ScoringConfig.id != keep_id)
        await session.execute(stmt.values(is_active=False))

    async def list_all(self) -> List[ScoringConfig]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ScoringConfig).order_by(ScoringConfig.created_at.desc(), ScoringConfig.id.desc())
            )
            return list(result.scalars().all())

    async def get(self, config_id: int) -> Optional[ScoringConfig]:
        async with self.session_factory() as session:
            return await session.get(ScoringConfig, config_id)

    async def get_active(self) -> Optional[ScoringConfig]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ScoringConfig).where(ScoringConfig.is_active.is_(True))
            )
            return result.scalars().first()

    async def create(self, data: ScoringConfigInput) -> ScoringConfig:
        """Create a configuration; it becomes the active one."""
        config = ScoringConfig(
            name=data.name,
            description=data.description,
            created_by=data.created_by,
            is_active=True,
            version=1,
            categories=_build_categories(data.categories),
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._deactivate_others(session)
                    session.add(config)
        except IntegrityError as e:
            raise ConflictError(
                message="Another configuration was activated concurrently",
                details={"name": data.name},
            ) from e

        await self._notify(ConfigChange(CREATED, config.id, affects_active=True))
        return config

    async def update(self, config_id: int, data: ScoringConfigUpdate) -> Optional[ScoringConfig]:
        """Update a configuration. Categories, when given, are replaced wholesale."""
        async with self.session_factory() as session:
            async with session.begin():
                config = await session.get(ScoringConfig, config_id)
                if config is None:
                    return None

                was_active = bool(config.is_active)
                will_be_active = was_active if data.is_active is None else data.is_active

                if data.name is not None:
                    config.name = data.name
                if data.description is not None:
                    config.description = data.description
                if data.categories is not None:
                    config.categories = _build_categories(data.categories)

                version = (config.version or 1) + 1
                if will_be_active:
                    await self._deactivate_others(session, keep_id=config.id)
                    await self._set_active(session, config.id, version=version)
                else:
                    config.is_active = False
                    config.version = version

        await self._notify(ConfigChange(UPDATED, config_id, affects_active=was_active or will_be_active))
        return config

    async def delete(self, config_id: int) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                config = await session.get(ScoringConfig, config_id)
                if config is None:
                    return False
                was_active = bool(config.is_active)
                await session.delete(config)

        await self._notify(ConfigChange(DELETED, config_id, affects_active=was_active))
        return True

    async def activate(self, config_id: int) -> Optional[ScoringConfig]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    config = await session.get(ScoringConfig, config_id)
                    if config is None:
                        return None
                    await self._deactivate_others(session, keep_id=config.id)
                    await self._set_active(session, config.id)
        except IntegrityError as e:
            raise ConflictError(
                message="Another configuration was activated concurrently",
                details={"config_id": config_id},
            ) from e

        await self._notify(ConfigChange(ACTIVATED, config_id, affects_active=True))
        return config

    async def ensure_default(self) -> ScoringConfig:
        """Return the active config, activating or creating the default one if none is."""
        active = await self.get_active()
        if active is not None:
            return active

        async with self.session_factory() as session:
            result = await session.execute(
                select(ScoringConfig.id)
                .where(ScoringConfig.name == DEFAULT_CONFIG_NAME)
                .order_by(ScoringConfig.id)
            )
            default_id = result.scalars().first()

        try:
            if default_id is not None:
                logger.info("scoring_config.default_activated", config_id=default_id)
                config = await self.activate(default_id)
            else:
                logger.info("scoring_config.default_created")
                config = await self.create(default_config_input())
        except ConflictError:
            config = None

        if config is None:
            # Lost a race with another worker; use whatever won
            config = await self.get_active()
            if config is None:
                raise ConflictError(message="No active scoring configuration after materialising default")
        return config
