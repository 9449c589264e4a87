# leadenrich/runtime.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadenrich.core.config import Settings, settings
from leadenrich.core.logging import get_structlog_logger
from leadenrich.services.address_resolver import AddressResolver, Geocoder, PostalLookupClient
from leadenrich.services.company_enricher import CompanyEnricher, CompanyRegistryClient
from leadenrich.services.ingestion import IngestionBatcher
from leadenrich.services.job_queue import LeadJobQueue
from leadenrich.services.job_scheduler import JobScheduler
from leadenrich.services.job_tracker import JobTracker
from leadenrich.services.lead_pipeline import LeadPipeline
from leadenrich.services.postal_cache import PostalCache
from leadenrich.services.rate_limiter import RegistryRateLimiter
from leadenrich.services.recalculation import RecalculationCoordinator
from leadenrich.services.scoring_config_store import ScoringConfigStore
from leadenrich.services.scoring_service import ScoringService

logger = get_structlog_logger(__name__)


@dataclass
class Runtime:
    redis: Redis
    session_factory: async_sessionmaker[AsyncSession]
    rate_limiter: RegistryRateLimiter
    postal_cache: PostalCache
    address_resolver: AddressResolver
    company_enricher: CompanyEnricher
    scoring_store: ScoringConfigStore
    scoring_service: ScoringService
    queue: LeadJobQueue
    tracker: JobTracker
    pipeline: LeadPipeline
    scheduler: JobScheduler
    ingestion: IngestionBatcher
    recalculation: RecalculationCoordinator


def build_runtime(
    redis_client: Redis,
    session_factory: async_sessionmaker[AsyncSession],
    config: Settings = settings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    postal_client: Optional[PostalLookupClient] = None,
    registry_client: Optional[CompanyRegistryClient] = None,
) -> Runtime:
    """Wire every pipeline component from settings."""
    rate_limiter = RegistryRateLimiter(
        redis_client,
        points=config.registry_rate_limit_points,
        window_ms=config.registry_rate_limit_window_ms,
        poll_interval=config.registry_rate_limit_poll_seconds,
        sleep=sleep,
    )
    postal_cache = PostalCache(redis_client, ttl_seconds=config.postal_cache_ttl_seconds)
    geocoder = Geocoder(config.geocoding_api_key) if config.geocoding_api_key else None
    address_resolver = AddressResolver(
        postal_cache,
        postal_client or PostalLookupClient(),
        geocoder=geocoder,
        min_interval=config.postal_min_interval_ms / 1000.0,
        sleep=sleep,
    )
    company_enricher = CompanyEnricher(
        registry_client or CompanyRegistryClient(),
        rate_limiter,
        max_attempts=config.enricher_max_attempts,
        base_delay_ms=config.enricher_backoff_base_ms,
        sleep=sleep,
    )

    scoring_store = ScoringConfigStore(session_factory)
    scoring_service = ScoringService(scoring_store)
    recalculation = RecalculationCoordinator(
        session_factory,
        scoring_service,
        redis_client=redis_client,
        batch_size=config.recalculation_batch_size,
        pause_ms=config.recalculation_pause_ms,
        sleep=sleep,
    )
    scoring_store.add_listener(recalculation.on_config_change)

    queue = LeadJobQueue(
        redis_client,
        max_attempts=config.scheduler_max_attempts,
        backoff_base_ms=config.scheduler_backoff_base_ms,
        dead_letter_retention_days=config.scheduler_dead_letter_retention_days,
    )
    tracker = JobTracker(session_factory)
    pipeline = LeadPipeline(session_factory, address_resolver, company_enricher, scoring_service, tracker)
    scheduler = JobScheduler(
        queue,
        pipeline,
        tracker,
        concurrency=config.scheduler_concurrency,
        poll_interval=config.scheduler_poll_seconds,
        visibility_timeout_seconds=config.scheduler_visibility_timeout_seconds,
        completed_retention_days=config.completed_job_retention_days,
    )
    ingestion = IngestionBatcher(
        session_factory,
        queue,
        batch_size=config.ingestion_batch_size,
        batch_interval=config.ingestion_batch_interval_seconds,
        base_delay_ms=config.ingestion_base_delay_ms,
        sleep=sleep,
    )

    logger.info(
        "runtime.built",
        concurrency=config.scheduler_concurrency,
        geocoding=geocoder is not None,
    )
    return Runtime(
        redis=redis_client,
        session_factory=session_factory,
        rate_limiter=rate_limiter,
        postal_cache=postal_cache,
        address_resolver=address_resolver,
        company_enricher=company_enricher,
        scoring_store=scoring_store,
        scoring_service=scoring_service,
        queue=queue,
        tracker=tracker,
        pipeline=pipeline,
        scheduler=scheduler,
        ingestion=ingestion,
        recalculation=recalculation,
    )


# Global runtime instance
runtime: Optional[Runtime] = None


def init_runtime(redis_client: Redis, session_factory: async_sessionmaker[AsyncSession], **kwargs) -> Runtime:
    global runtime

    if runtime is None:
        runtime = build_runtime(redis_client, session_factory, **kwargs)

    return runtime


async def get_runtime() -> Runtime:
    global runtime

    if runtime is None:
        from leadenrich.db.session import get_session_factory
        from leadenrich.services.redis import get_redis_client

        redis_client = await get_redis_client()
        runtime = build_runtime(redis_client, get_session_factory())

    return runtime


def reset_runtime() -> None:
    global runtime
    runtime = None
