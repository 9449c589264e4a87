# leadenrich/services/ingestion.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Union

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadenrich.core.logging import get_structlog_logger
from leadenrich.models.enums import JobStatus, LeadStatus
from leadenrich.models.lead import Lead
from leadenrich.models.processing_job import ProcessingJob
from leadenrich.schemas.raw_lead import RawLeadRecord
from leadenrich.services.company_enricher import normalize_tax_id
from leadenrich.services.job_queue import LeadJobQueue

logger = get_structlog_logger(__name__)

RawInput = Union[RawLeadRecord, Mapping[str, Any]]


@dataclass(frozen=True)
class IngestionResult:
    created: int
    skipped: int
    total: int

    def to_dict(self) -> dict:
        return {"created": self.created, "skipped": self.skipped, "total": self.total}


class IngestionBatcher:
    """Admits raw records as leads and schedules their processing.

    Records are handled in small batches spaced ``batch_interval`` seconds
    apart; each job also carries a start delay that grows with its batch
    index so the registry quota is not hit all at once.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: LeadJobQueue,
        batch_size: int = 3,
        batch_interval: float = 15.0,
        base_delay_ms: int = 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.session_factory = session_factory
        self.queue = queue
        self.batch_size = batch_size
        self.batch_interval = batch_interval
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep

    def job_delay_ms(self, batch_index: int) -> int:
        return self.base_delay_ms + int(batch_index * self.batch_interval * 1000)

    async def ingest(self, records: Iterable[RawInput]) -> IngestionResult:
        items: List[RawInput] = list(records)
        batches = [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]
        created = 0
        skipped = 0

        logger.info("ingestion.started", total=len(items), batches=len(batches), batch_size=self.batch_size)

        for batch_index, batch in enumerate(batches):
            for raw in batch:
                if await self._admit(raw, batch_index):
                    created += 1
                else:
                    skipped += 1

            if batch_index < len(batches) - 1:
                logger.debug("ingestion.batch_pause", batch_index=batch_index, seconds=self.batch_interval)
                await self._sleep(self.batch_interval)

        result = IngestionResult(created=created, skipped=skipped, total=len(items))
        logger.info("ingestion.completed", **result.to_dict())
        return result

    async def _admit(self, raw: RawInput, batch_index: int) -> bool:
        try:
            record = raw if isinstance(raw, RawLeadRecord) else RawLeadRecord.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning("ingestion.invalid_record", errors=e.error_count())
            return False

        tax_id = normalize_tax_id(record.tax_id)
        if not tax_id:
            logger.warning("ingestion.missing_tax_id", raw_tax_id=record.tax_id)
            return False

        queued = None
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    existing = await session.execute(select(Lead.id).where(Lead.tax_id == tax_id))
                    if existing.scalar_one_or_none() is not None:
                        logger.info("ingestion.duplicate", tax_id=tax_id)
                        return False

                    lead = Lead(
                        tax_id=tax_id,
                        company_name=record.company_name,
                        trade_name=record.trade_name,
                        parent_name=record.parent_name,
                        municipality=record.municipality,
                        district=record.district,
                        subdistrict=record.subdistrict,
                        postal_code=record.postal_code,
                        neighborhood=record.neighborhood,
                        street=record.street,
                        suggested_street=record.suggested_street,
                        raw_coordinates=record.raw_coordinates,
                        street_view_url=record.street_view_url,
                        status=LeadStatus.AWAITING,
                    )
                    session.add(lead)
                    await session.flush()

                    processing_job = ProcessingJob(lead_id=lead.id, status=JobStatus.PENDING, progress=0)
                    session.add(processing_job)
                    await session.flush()

                    delay_ms = self.job_delay_ms(batch_index)
                    queued = await self.queue.enqueue(
                        lead_id=lead.id,
                        processing_job_id=processing_job.id,
                        delay_ms=delay_ms,
                        priority=1,
                    )
                    processing_job.queue_job_id = queued.job_id

        except IntegrityError:
            # Unique tax_id lost a race with a concurrent import
            logger.info("ingestion.duplicate", tax_id=tax_id, concurrent=True)
            await self._discard(queued)
            return False
        except (SQLAlchemyError, RedisError) as e:
            logger.error("ingestion.record_failed", tax_id=tax_id, error=str(e))
            await self._discard(queued)
            return False

        logger.info("ingestion.admitted", tax_id=tax_id, lead_id=lead.id, delay_ms=delay_ms)
        return True

    async def _discard(self, queued) -> None:
        if queued is None:
            return
        try:
            await self.queue.discard(queued.job_id)
        except RedisError as e:
            logger.error("ingestion.discard_failed", job_id=queued.job_id, error=str(e))
