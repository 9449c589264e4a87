# leadenrich/services/lead_pipeline.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadenrich.core.exceptions import PipelineError
from leadenrich.core.logging import get_structlog_logger
from leadenrich.models.lead import Lead
from leadenrich.services.address_resolver import (
    Address,
    AddressResolver,
    is_valid,
    parse_coordinates,
)
from leadenrich.services.company_enricher import CompanyEnricher, CompanyRecord
from leadenrich.services.job_queue import QueuedJob
from leadenrich.services.job_tracker import (
    STEP_ADDRESS,
    STEP_COMPANY,
    STEP_PERSIST,
    STEP_SCORING,
    JobTracker,
)
from leadenrich.services.outcome import StageOutcome
from leadenrich.services.postal_cache import is_postal_code, normalize_postal_code
from leadenrich.services.regions import region_for_state
from leadenrich.services.scoring_engine import ScoreResult, ScoringInput
from leadenrich.services.scoring_service import ScoringService

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    lead_id: int
    score: ScoreResult
    address_reason: Optional[str]
    company_reason: Optional[str]
    address_degraded: bool
    company_found: bool


def _state_hint(municipality: Optional[str]) -> Optional[str]:
    if not municipality or " - " not in municipality:
        return None
    candidate = municipality.rsplit(" - ", 1)[1].strip().upper()
    return candidate if len(candidate) == 2 and candidate.isalpha() else None


def _city_hint(municipality: Optional[str]) -> Optional[str]:
    if not municipality:
        return None
    return municipality.split(" - ", 1)[0].strip() or None


def partial_address_for(lead: Lead) -> Address:
    return Address(
        street=lead.street or lead.suggested_street,
        neighborhood=lead.neighborhood,
        city=_city_hint(lead.municipality),
        state=_state_hint(lead.municipality),
        postal_code=lead.postal_code,
        coordinates=parse_coordinates(lead.raw_coordinates),
    )


def scoring_input_for(lead: Lead, address: Address, company: Optional[CompanyRecord]) -> ScoringInput:
    state = address.state
    if company is None:
        return ScoringInput(
            tax_id=lead.tax_id,
            company_name=lead.company_name,
            trade_name=lead.trade_name,
            state=state,
            region=region_for_state(state),
            address_validated=is_valid(address),
            has_coordinates=address.coordinates is not None,
        )

    return ScoringInput(
        tax_id=lead.tax_id,
        company_name=company.company_name or lead.company_name,
        trade_name=company.trade_name or lead.trade_name,
        activity_code=company.activity_code,
        registered_capital=company.registered_capital,
        founded_on=company.founded_on,
        partner_count=len(company.partners),
        region=company.region or region_for_state(state),
        state=state,
        address_validated=is_valid(address),
        has_coordinates=address.coordinates is not None,
    )


class LeadPipeline:
    """One lead through address, company, scoring and persistence stages."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        address_resolver: AddressResolver,
        company_enricher: CompanyEnricher,
        scoring_service: ScoringService,
        tracker: JobTracker,
    ):
        self.session_factory = session_factory
        self.address_resolver = address_resolver
        self.company_enricher = company_enricher
        self.scoring_service = scoring_service
        self.tracker = tracker

    async def _load_lead(self, lead_id: int) -> Lead:
        async with self.session_factory() as session:
            lead = await session.get(Lead, lead_id)
        if lead is None:
            raise PipelineError(message=f"Lead {lead_id} not found", details={"lead_id": lead_id})
        return lead

    async def run(self, job: QueuedJob) -> PipelineResult:
        lead = await self._load_lead(job.lead_id)

        await self.tracker.update_progress(job.processing_job_id, 25, STEP_ADDRESS)
        address_outcome: StageOutcome[Address] = await self.address_resolver.resolve_detailed(
            partial_address_for(lead)
        )
        address = address_outcome.value

        await self.tracker.update_progress(job.processing_job_id, 50, STEP_COMPANY)
        company_outcome = await self.company_enricher.fetch_detailed(lead.tax_id)
        company = company_outcome.value

        await self.tracker.update_progress(job.processing_job_id, 75, STEP_SCORING)
        score = await self.scoring_service.score_enriched(
            scoring_input_for(lead, address, company),
            street=address.street,
            has_coordinates=address.coordinates is not None,
        )

        await self.tracker.update_progress(job.processing_job_id, 85, STEP_PERSIST)
        await self._persist(lead.id, address, company, score)

        await self.tracker.mark_completed(job.processing_job_id, lead.id)

        logger.info(
            "pipeline.completed",
            lead_id=lead.id,
            score=score.score,
            tier=score.tier.value,
            mode=score.mode,
            address_reason=address_outcome.reason,
            company_reason=company_outcome.reason,
        )
        return PipelineResult(
            lead_id=lead.id,
            score=score,
            address_reason=address_outcome.reason,
            company_reason=company_outcome.reason,
            address_degraded=address_outcome.degraded,
            company_found=company is not None,
        )

    async def _persist(
        self,
        lead_id: int,
        address: Address,
        company: Optional[CompanyRecord],
        score: ScoreResult,
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                lead = await session.get(Lead, lead_id)
                if lead is None:
                    raise PipelineError(message=f"Lead {lead_id} disappeared during processing")

                lead.validated_street = address.street
                lead.validated_number = address.number
                lead.validated_complement = address.complement
                lead.validated_neighborhood = address.neighborhood
                lead.validated_city = address.city
                lead.validated_state = address.state
                postal_code = normalize_postal_code(address.postal_code)
                lead.validated_postal_code = postal_code if is_postal_code(postal_code) else None
                lead.latitude = address.coordinates.latitude if address.coordinates else None
                lead.longitude = address.coordinates.longitude if address.coordinates else None
                lead.address_validated = is_valid(address)

                if company is not None:
                    lead.activity_code = company.activity_code
                    lead.activity_description = company.activity_description
                    lead.registered_capital = company.registered_capital
                    lead.founded_on = company.founded_on
                    lead.partners = [partner.to_dict() for partner in company.partners]
                    lead.region = company.region
                    lead.market_segment = company.market_segment
                    if not lead.trade_name and company.trade_name:
                        lead.trade_name = company.trade_name
                if not lead.region:
                    lead.region = region_for_state(address.state)

                lead.score = score.score
                lead.tier = score.tier
                lead.score_factors = list(score.factors)
                lead.confidence = score.confidence
