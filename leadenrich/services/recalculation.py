# leadenrich/services/recalculation.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadenrich.core.logging import get_structlog_logger
from leadenrich.models.enums import LeadStatus
from leadenrich.models.lead import Lead
from leadenrich.services.redis import RedisCache
from leadenrich.services.scoring_config_store import ConfigChange
from leadenrich.services.scoring_engine import ScoringInput, ScoringRules
from leadenrich.services.scoring_service import ScoringService

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class RecalculationResult:
    updated: int
    errors: int

    def to_dict(self) -> dict:
        return {"updated": self.updated, "errors": self.errors}


class RecalculationCoordinator:
    """Re-scores every processed lead against the active configuration.

    Leads are read in id order, ``batch_size`` at a time, from their stored
    enrichment attributes. After each batch the last lead id is checkpointed
    in Redis under the config id and version, so an interrupted run for the
    same configuration resumes where it stopped.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scoring_service: ScoringService,
        redis_client: Optional[Redis] = None,
        batch_size: int = 50,
        pause_ms: int = 100,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.scoring_service = scoring_service
        self.checkpoints = RedisCache(redis_client, prefix="recalculation") if redis_client is not None else None
        self.batch_size = batch_size
        self.pause_ms = pause_ms
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._rerun = False

    @staticmethod
    def _checkpoint_key(rules: Optional[ScoringRules]) -> str:
        if rules is None:
            return "checkpoint:none"
        return f"checkpoint:{rules.config_id}:{rules.version}"

    async def _load_checkpoint(self, key: str) -> int:
        if self.checkpoints is None:
            return 0
        value = await self.checkpoints.get(key, default=0)
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    async def _save_checkpoint(self, key: str, last_id: int) -> None:
        if self.checkpoints is not None:
            await self.checkpoints.set(key, last_id, expire=24 * 3600)

    async def _clear_checkpoint(self, key: str) -> None:
        if self.checkpoints is not None:
            await self.checkpoints.delete(key)

    async def recalculate(self) -> RecalculationResult:
        async with self._lock:
            rules = await self.scoring_service.active_rules()
            if rules is None:
                # Default was just materialised
                rules = await self.scoring_service.active_rules()

            key = self._checkpoint_key(rules)
            last_id = await self._load_checkpoint(key)
            updated = 0
            errors = 0

            logger.info(
                "recalculation.started",
                config_id=rules.config_id if rules else None,
                version=rules.version if rules else None,
                resume_after=last_id,
            )

            while True:
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            select(Lead)
                            .where(Lead.status == LeadStatus.PROCESSED, Lead.id > last_id)
                            .order_by(Lead.id)
                            .limit(self.batch_size)
                        )
                        leads = list(result.scalars().all())
                        if not leads:
                            break

                        for lead in leads:
                            try:
                                score = await self.scoring_service.score_enriched(
                                    ScoringInput.from_lead(lead),
                                    street=lead.validated_street,
                                    has_coordinates=lead.has_coordinates,
                                    rules=rules,
                                )
                            except Exception as e:
                                errors += 1
                                logger.error("recalculation.lead_failed", lead_id=lead.id, error=str(e))
                                continue

                            lead.score = score.score
                            lead.tier = score.tier
                            lead.score_factors = list(score.factors)
                            lead.confidence = score.confidence
                            updated += 1

                        last_id = leads[-1].id

                await self._save_checkpoint(key, last_id)
                logger.debug("recalculation.batch", last_id=last_id, updated=updated, errors=errors)

                if len(leads) < self.batch_size:
                    break
                await self._sleep(self.pause_ms / 1000.0)

            await self._clear_checkpoint(key)

        result = RecalculationResult(updated=updated, errors=errors)
        logger.info("recalculation.completed", **result.to_dict())
        return result

    def trigger(self) -> asyncio.Task:
        """Schedule a background run; triggers during a run coalesce into one rerun."""
        if self._task is not None and not self._task.done():
            self._rerun = True
            return self._task
        self._task = asyncio.create_task(self._run_until_settled(), name="score-recalculation")
        return self._task

    async def on_config_change(self, change: ConfigChange) -> None:
        logger.info("recalculation.triggered", action=change.action, config_id=change.config_id)
        self.trigger()

    async def wait_idle(self) -> None:
        if self._task is not None:
            await self._task

    async def _run_until_settled(self) -> None:
        while True:
            self._rerun = False
            try:
                await self.recalculate()
            except Exception as e:
                logger.exception("recalculation.failed", error=str(e))
            if not self._rerun:
                break
