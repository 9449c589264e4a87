from datetime import date

import pytest

from leadenrich.models.enums import CategoryType, ScoreTier
from leadenrich.services.scoring_config_store import default_config_input
from leadenrich.services.scoring_engine import (
    MODE_CONFIGURED,
    MODE_HEURISTIC,
    MODE_UNCONFIGURED,
    NO_CONFIG_FACTOR,
    CategoryRule,
    CriterionRule,
    ScoringEngine,
    ScoringInput,
    ScoringRules,
    capital_bucket,
    confidence_for,
    founding_age_bucket,
    tier_for,
)

TODAY = date(2024, 6, 1)


def rules_from_input(data, config_id=1, version=1):
    return ScoringRules(
        config_id=config_id,
        version=version,
        name=data.name,
        categories=tuple(
            CategoryRule(
                name=category.name,
                type=category.type,
                points=category.points,
                description=category.description,
                criteria=tuple(CriterionRule(c.value, c.points) for c in category.criteria),
            )
            for category in data.categories
        ),
    )


@pytest.fixture
def engine():
    return ScoringEngine(today=lambda: TODAY)


@pytest.fixture
def default_rules():
    return rules_from_input(default_config_input())


def test_single_activity_code_match(engine, default_rules):
    result = engine.score(default_rules, ScoringInput(tax_id="12345678000190", activity_code="4721100"))

    assert result.score == 45
    assert result.tier == ScoreTier.LOW
    assert result.mode == MODE_CONFIGURED
    assert result.factors == ("High-potential activity codes: 45 points",)


def test_total_is_clamped_to_100(engine, default_rules):
    data = ScoringInput(
        tax_id="12345678000190",
        activity_code="4721100",
        registered_capital=2_000_000,
        founded_on=date(2000, 1, 1),
        partner_count=2,
        state="SP",
        address_validated=True,
        has_coordinates=True,
    )

    result = engine.score(default_rules, data)

    assert result.score == 100
    assert result.tier == ScoreTier.HIGH
    assert result.confidence == 100
    assert len(result.factors) == 6


def test_region_accepts_state_or_region_name(engine, default_rules):
    by_state = engine.score(default_rules, ScoringInput(state="PE"))
    by_region = engine.score(default_rules, ScoringInput(region="Nordeste"))

    assert by_state.score == by_region.score == 10


def test_no_rules_scores_zero(engine):
    result = engine.score(None, ScoringInput(activity_code="4721100"))

    assert result.score == 0
    assert result.tier == ScoreTier.LOW
    assert result.factors == (NO_CONFIG_FACTOR,)
    assert result.mode == MODE_UNCONFIGURED


def test_custom_categories_contribute_nothing(engine):
    rules = ScoringRules(
        config_id=1,
        version=1,
        name="custom",
        categories=(CategoryRule(name="Manual", type=CategoryType.CUSTOM, points=50, criteria=(CriterionRule("x", 50),)),),
    )

    assert engine.score(rules, ScoringInput(activity_code="x")).score == 0


def test_details_lists_matched_categories(engine, default_rules):
    details = engine.details(default_rules, ScoringInput(activity_code="1091102", state="RS"))

    assert details.total_score == 50
    assert details.tier == ScoreTier.MEDIUM
    assert [f.factor for f in details.factors] == ["Medium-potential activity codes", "High-potential regions"]
    assert details.factors[0].description == "Food manufacturing activities"
    assert details.to_dict()["tier"] == "medium"


def test_details_without_rules(engine):
    details = engine.details(None, ScoringInput())

    assert details.total_score == 0
    assert details.factors[0].description == NO_CONFIG_FACTOR


@pytest.mark.parametrize(
    "score,tier",
    [(80, ScoreTier.HIGH), (79, ScoreTier.MEDIUM), (50, ScoreTier.MEDIUM), (49, ScoreTier.LOW)],
)
def test_configured_tiers(score, tier):
    assert tier_for(score) == tier


def test_buckets():
    assert capital_bucket(1_500_000) == "high"
    assert capital_bucket(1_000_000) == "medium"
    assert capital_bucket(50_000) == "low"
    assert capital_bucket(5_000) == "very_low"
    assert capital_bucket(None) is None

    assert founding_age_bucket(date(2013, 1, 1), TODAY) == "10+"
    assert founding_age_bucket(date(2014, 1, 1), TODAY) == "5-10"
    assert founding_age_bucket(date(2019, 1, 1), TODAY) == "2-5"
    assert founding_age_bucket(date(2022, 1, 1), TODAY) == "0-2"


def test_confidence_counts_available_fields():
    assert confidence_for(ScoringInput()) == 0
    assert confidence_for(ScoringInput(tax_id="1", activity_code="2")) == 25


def test_heuristic_with_business_keyword(engine):
    result = engine.heuristic(ScoringInput(company_name="Padaria Bom Pão", state="SP"))

    assert result.score == 75
    assert result.tier == ScoreTier.HIGH
    assert result.mode == MODE_HEURISTIC
    assert result.confidence == 40
    assert "Region sudeste: 30 points" in result.factors
    assert "Business type identified: padaria" in result.factors


def test_heuristic_without_keyword_or_region(engine):
    result = engine.heuristic(ScoringInput(company_name="XPTO Participações"))

    assert result.score == 25
    assert result.tier == ScoreTier.LOW
    assert result.factors == ("Business type not identified by name",)


def test_heuristic_other_known_region_uses_default_weight(engine):
    result = engine.heuristic(ScoringInput(company_name="XPTO Participações", state="AM"))

    assert result.score == 40
    assert result.tier == ScoreTier.MEDIUM
    assert "Region norte: 15 points" in result.factors


def test_evaluate_picks_mode_by_company_data(engine, default_rules):
    assert engine.evaluate(default_rules, ScoringInput(company_name="Padaria")).mode == MODE_HEURISTIC
    assert engine.evaluate(default_rules, ScoringInput(activity_code="4721100")).mode == MODE_CONFIGURED


def test_address_bonus(engine):
    base = engine.heuristic(ScoringInput(company_name="XPTO"))

    result = engine.apply_address_bonus(base, street="Rua A", has_coordinates=True)

    # 25 heuristic + 10 street + 5 coordinates
    assert result.score == 40
    assert result.tier == ScoreTier.MEDIUM
    assert result.confidence == 60
    assert result.factors[-2:] == ("Address validated", "Precise coordinates")


def test_address_bonus_is_capped(engine, default_rules):
    data = ScoringInput(
        activity_code="4721100",
        registered_capital=2_000_000,
        founded_on=date(2000, 1, 1),
        state="SP",
    )
    base = engine.score(default_rules, data)

    result = engine.apply_address_bonus(base, street="Rua A", has_coordinates=True)

    assert base.score == 88
    assert result.score == 100
    assert result.confidence <= 100
