# leadenrich/services/scoring_engine.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable, Dict, Optional, Tuple

from leadenrich.models.enums import CategoryType, ScoreTier
from leadenrich.services.regions import CENTER_WEST, NORTHEAST, SOUTH, SOUTHEAST, resolve_region

MODE_CONFIGURED = "configured"
MODE_HEURISTIC = "heuristic"
MODE_UNCONFIGURED = "unconfigured"

NO_CONFIG_FACTOR = "No active scoring configuration"

CONFIGURED_THRESHOLDS = (80, 50)
HEURISTIC_THRESHOLDS = (60, 35)

HEURISTIC_BASE_SCORE = 20
HEURISTIC_REGION_MULTIPLIER = 1.5
HEURISTIC_CONFIDENCE = 40
HIGH_KEYWORD_POINTS = 25
MEDIUM_KEYWORD_POINTS = 15
NO_KEYWORD_POINTS = 5

ADDRESS_BONUS = 10
COORDINATES_BONUS = 5
ADDRESS_CONFIDENCE_BONUS = 20

REGION_WEIGHTS: Dict[str, int] = {
    SOUTHEAST: 20,
    SOUTH: 20,
    CENTER_WEST: 15,
    NORTHEAST: 15,
}
DEFAULT_REGION_WEIGHT = 10

HIGH_POTENTIAL_KEYWORDS = (
    "supermercado", "hipermercado", "mercado", "varejo",
    "padaria", "confeitaria", "doces", "bolos",
    "restaurante", "lanchonete", "alimentacao", "alimentos",
    "industria", "fabrica", "producao",
    "distribuidora", "atacado", "comercio",
)
MEDIUM_POTENTIAL_KEYWORDS = (
    "cafe", "bar", "sorveteria", "pizzaria",
    "hotel", "pousada", "catering",
    "mercearia", "quitanda", "emporio",
)

CONFIDENCE_FIELDS = 8


@dataclass(frozen=True)
class CriterionRule:
    value: str
    points: int


@dataclass(frozen=True)
class CategoryRule:
    name: str
    type: CategoryType
    points: int = 0
    description: Optional[str] = None
    criteria: Tuple[CriterionRule, ...] = ()

    def criterion_points(self, value: Optional[str], *, case_insensitive: bool = False) -> Optional[int]:
        if value is None:
            return None
        for criterion in self.criteria:
            candidate = criterion.value.strip()
            if case_insensitive:
                if candidate.lower() == value.lower():
                    return criterion.points
            elif candidate == value:
                return criterion.points
        return None


@dataclass(frozen=True)
class ScoringRules:
    """Immutable snapshot of a scoring configuration."""

    config_id: Optional[int]
    version: int
    name: str
    categories: Tuple[CategoryRule, ...] = ()

    @classmethod
    def from_model(cls, config) -> "ScoringRules":
        return cls(
            config_id=config.id,
            version=config.version,
            name=config.name,
            categories=tuple(
                CategoryRule(
                    name=category.name,
                    type=CategoryType(category.type),
                    points=category.points or 0,
                    description=category.description,
                    criteria=tuple(
                        CriterionRule(value=criterion.value, points=criterion.points or 0)
                        for criterion in category.criteria
                    ),
                )
                for category in config.categories
            ),
        )


@dataclass(frozen=True)
class ScoringInput:
    tax_id: Optional[str] = None
    company_name: Optional[str] = None
    trade_name: Optional[str] = None
    activity_code: Optional[str] = None
    registered_capital: Optional[float] = None
    founded_on: Optional[date] = None
    partner_count: int = 0
    region: Optional[str] = None
    state: Optional[str] = None
    address_validated: bool = False
    has_coordinates: bool = False

    @property
    def resolved_region(self) -> Optional[str]:
        return resolve_region(self.region) or resolve_region(self.state)

    @property
    def has_company_data(self) -> bool:
        return bool(
            self.activity_code
            or self.registered_capital
            or self.founded_on
            or self.partner_count
        )

    @classmethod
    def from_lead(cls, lead) -> "ScoringInput":
        return cls(
            tax_id=lead.tax_id,
            company_name=lead.company_name,
            trade_name=lead.trade_name,
            activity_code=lead.activity_code,
            registered_capital=lead.registered_capital,
            founded_on=lead.founded_on,
            partner_count=len(lead.partners or []),
            region=lead.region,
            state=lead.validated_state,
            address_validated=bool(lead.address_validated),
            has_coordinates=lead.latitude is not None and lead.longitude is not None,
        )


@dataclass(frozen=True)
class ScoreResult:
    score: int
    tier: ScoreTier
    factors: Tuple[str, ...] = ()
    confidence: int = 0
    mode: str = MODE_CONFIGURED

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "tier": self.tier.value,
            "factors": list(self.factors),
            "confidence": self.confidence,
            "mode": self.mode,
        }


@dataclass(frozen=True)
class ScoreFactor:
    factor: str
    points: int
    description: str


@dataclass(frozen=True)
class ScoreDetails:
    total_score: int
    tier: ScoreTier
    factors: Tuple[ScoreFactor, ...] = field(default_factory=tuple)
    confidence: int = 0

    def to_dict(self) -> dict:
        return {
            "total_score": self.total_score,
            "tier": self.tier.value,
            "factors": [
                {"factor": f.factor, "points": f.points, "description": f.description}
                for f in self.factors
            ],
            "confidence": self.confidence,
        }


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    return int(min(high, max(low, round(value))))


def tier_for(score: int, thresholds: Tuple[int, int] = CONFIGURED_THRESHOLDS) -> ScoreTier:
    high, medium = thresholds
    if score >= high:
        return ScoreTier.HIGH
    if score >= medium:
        return ScoreTier.MEDIUM
    return ScoreTier.LOW


def capital_bucket(capital: Optional[float]) -> Optional[str]:
    if not capital:
        return None
    if capital > 1_000_000:
        return "high"
    if capital > 100_000:
        return "medium"
    if capital > 10_000:
        return "low"
    return "very_low"


def founding_age_bucket(founded_on: Optional[date], today: date) -> Optional[str]:
    if founded_on is None:
        return None
    years = today.year - founded_on.year
    if years > 10:
        return "10+"
    if years > 5:
        return "5-10"
    if years > 2:
        return "2-5"
    return "0-2"


# Matchers: (category, data, today) -> points
Matcher = Callable[[CategoryRule, ScoringInput, date], int]


def _match_activity_code(category: CategoryRule, data: ScoringInput, today: date) -> int:
    return category.criterion_points(data.activity_code) or 0


def _match_region(category: CategoryRule, data: ScoringInput, today: date) -> int:
    return category.criterion_points(data.resolved_region, case_insensitive=True) or 0


def _match_capital(category: CategoryRule, data: ScoringInput, today: date) -> int:
    return category.criterion_points(capital_bucket(data.registered_capital)) or 0


def _match_founding_age(category: CategoryRule, data: ScoringInput, today: date) -> int:
    return category.criterion_points(founding_age_bucket(data.founded_on, today)) or 0


def _match_address(category: CategoryRule, data: ScoringInput, today: date) -> int:
    if not data.address_validated:
        return 0
    points = category.criterion_points("validated")
    return category.points if points is None else points


def _match_partners(category: CategoryRule, data: ScoringInput, today: date) -> int:
    if data.partner_count <= 0:
        return 0
    points = category.criterion_points("identified")
    return category.points if points is None else points


def _match_custom(category: CategoryRule, data: ScoringInput, today: date) -> int:
    return 0


MATCHERS: Dict[CategoryType, Matcher] = {
    CategoryType.ACTIVITY_CODE: _match_activity_code,
    CategoryType.REGION: _match_region,
    CategoryType.CAPITAL: _match_capital,
    CategoryType.FOUNDING_AGE: _match_founding_age,
    CategoryType.ADDRESS: _match_address,
    CategoryType.PARTNERS: _match_partners,
    CategoryType.CUSTOM: _match_custom,
}


def confidence_for(data: ScoringInput) -> int:
    available = sum(
        1
        for present in (
            data.tax_id,
            data.activity_code,
            data.registered_capital,
            data.founded_on,
            data.partner_count > 0,
            data.resolved_region,
            data.address_validated,
            data.has_coordinates,
        )
        if present
    )
    return round(100 * available / CONFIDENCE_FIELDS)


class ScoringEngine:
    """Points-based lead scoring.

    Pure: rules and data come in, a result goes out. Loading the active
    configuration is the job of ``ScoringService``.
    """

    def __init__(self, today: Callable[[], date] = date.today):
        self._today = today

    def _category_points(self, rules: ScoringRules, data: ScoringInput):
        today = self._today()
        for category in rules.categories:
            yield category, MATCHERS[category.type](category, data, today)

    def score(self, rules: Optional[ScoringRules], data: ScoringInput) -> ScoreResult:
        if rules is None:
            return ScoreResult(
                score=0,
                tier=ScoreTier.LOW,
                factors=(NO_CONFIG_FACTOR,),
                confidence=0,
                mode=MODE_UNCONFIGURED,
            )

        total = 0
        factors = []
        for category, points in self._category_points(rules, data):
            if points > 0:
                total += points
                factors.append(f"{category.name}: {points} points")

        score = clamp(total)
        return ScoreResult(
            score=score,
            tier=tier_for(score, CONFIGURED_THRESHOLDS),
            factors=tuple(factors),
            confidence=confidence_for(data),
            mode=MODE_CONFIGURED,
        )

    def details(self, rules: Optional[ScoringRules], data: ScoringInput) -> ScoreDetails:
        if rules is None:
            return ScoreDetails(
                total_score=0,
                tier=ScoreTier.LOW,
                factors=(ScoreFactor(factor="Configuration", points=0, description=NO_CONFIG_FACTOR),),
                confidence=0,
            )

        total = 0
        factors = []
        for category, points in self._category_points(rules, data):
            if points > 0:
                total += points
                factors.append(
                    ScoreFactor(
                        factor=category.name,
                        points=points,
                        description=category.description or f"Score for category {category.name}",
                    )
                )

        score = clamp(total)
        return ScoreDetails(
            total_score=score,
            tier=tier_for(score, CONFIGURED_THRESHOLDS),
            factors=tuple(factors),
            confidence=confidence_for(data),
        )

    def heuristic(self, data: ScoringInput) -> ScoreResult:
        score = float(HEURISTIC_BASE_SCORE)
        factors = []

        region = data.resolved_region
        # Unknown region contributes nothing
        if region is not None:
            region_points = REGION_WEIGHTS.get(region, DEFAULT_REGION_WEIGHT) * HEURISTIC_REGION_MULTIPLIER
            score += region_points
            factors.append(f"Region {region}: {region_points:g} points")

        full_name = f"{data.company_name or ''} {data.trade_name or ''}".lower()
        high_matches = [keyword for keyword in HIGH_POTENTIAL_KEYWORDS if keyword in full_name]
        medium_matches = [keyword for keyword in MEDIUM_POTENTIAL_KEYWORDS if keyword in full_name]

        if high_matches:
            score += HIGH_KEYWORD_POINTS
            factors.append(f"Business type identified: {', '.join(high_matches)}")
        elif medium_matches:
            score += MEDIUM_KEYWORD_POINTS
            factors.append(f"Possible related segment: {', '.join(medium_matches)}")
        else:
            score += NO_KEYWORD_POINTS
            factors.append("Business type not identified by name")

        final = clamp(score)
        return ScoreResult(
            score=final,
            tier=tier_for(final, HEURISTIC_THRESHOLDS),
            factors=tuple(factors),
            confidence=HEURISTIC_CONFIDENCE,
            mode=MODE_HEURISTIC,
        )

    def evaluate(self, rules: Optional[ScoringRules], data: ScoringInput) -> ScoreResult:
        """Configured scoring when company data exists, heuristic otherwise."""
        if data.has_company_data:
            return self.score(rules, data)
        return self.heuristic(data)

    def apply_address_bonus(
        self,
        result: ScoreResult,
        street: Optional[str],
        has_coordinates: bool,
    ) -> ScoreResult:
        score = result.score
        factors = list(result.factors)

        if street:
            score += ADDRESS_BONUS
            factors.append("Address validated")
        if has_coordinates:
            score += COORDINATES_BONUS
            factors.append("Precise coordinates")

        score = clamp(score)
        thresholds = HEURISTIC_THRESHOLDS if result.mode == MODE_HEURISTIC else CONFIGURED_THRESHOLDS
        return replace(
            result,
            score=score,
            tier=tier_for(score, thresholds),
            factors=tuple(factors),
            confidence=min(100, result.confidence + ADDRESS_CONFIDENCE_BONUS),
        )
