# leadenrich/services/scoring_service.py
from __future__ import annotations

from typing import Optional

from leadenrich.core.logging import get_structlog_logger
from leadenrich.services.scoring_config_store import ScoringConfigStore
from leadenrich.services.scoring_engine import (
    ScoreDetails,
    ScoreResult,
    ScoringEngine,
    ScoringInput,
    ScoringRules,
)

logger = get_structlog_logger(__name__)


class ScoringService:
    """Reads the active configuration on every call and scores with it.

    When nothing is active the call scores as unconfigured and the default
    configuration is materialised so later calls are configured.
    """

    def __init__(self, store: ScoringConfigStore, engine: Optional[ScoringEngine] = None):
        self.store = store
        self.engine = engine or ScoringEngine()

    async def active_rules(self) -> Optional[ScoringRules]:
        config = await self.store.get_active()
        if config is not None:
            return ScoringRules.from_model(config)

        logger.warning("scoring.no_active_config")
        await self.store.ensure_default()
        return None

    async def score(self, data: ScoringInput) -> ScoreResult:
        return self.engine.score(await self.active_rules(), data)

    async def get_score_details(self, data: ScoringInput) -> ScoreDetails:
        return self.engine.details(await self.active_rules(), data)

    async def score_enriched(
        self,
        data: ScoringInput,
        street: Optional[str],
        has_coordinates: bool,
        rules: Optional[ScoringRules] = None,
    ) -> ScoreResult:
        """Full lead score: configured or heuristic mode, plus the address bonus."""
        if rules is None:
            rules = await self.active_rules()
        result = self.engine.evaluate(rules, data)
        return self.engine.apply_address_bonus(result, street, has_coordinates)
