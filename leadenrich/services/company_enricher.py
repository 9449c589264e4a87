# leadenrich/services/company_enricher.py
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from leadenrich.core.config import settings
from leadenrich.core.logging import get_structlog_logger
from leadenrich.services import outcome
from leadenrich.services.outcome import StageOutcome
from leadenrich.services.rate_limiter import RegistryRateLimiter
from leadenrich.services.regions import region_for_state

logger = get_structlog_logger(__name__)

TAX_ID_LENGTH = 14

# Activity text keywords -> market segment, first match wins
MARKET_SEGMENTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("bakery", ("padaria", "confeitaria", "panificadora")),
    ("retail", ("supermercado", "varejo", "comércio", "comercio")),
    ("food_service", ("restaurante", "lanchonete", "bar")),
    ("industry", ("indústria", "industria", "fabricação", "fabricacao", "produção", "producao")),
)
OTHER_SEGMENT = "other"


@dataclass(frozen=True)
class Partner:
    name: str
    document: Optional[str] = None
    role: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "document": self.document, "role": self.role}


@dataclass(frozen=True)
class CompanyRecord:
    tax_id: str
    company_name: Optional[str] = None
    trade_name: Optional[str] = None
    activity_code: Optional[str] = None
    activity_description: Optional[str] = None
    registered_capital: Optional[float] = None
    founded_on: Optional[date] = None
    partners: Tuple[Partner, ...] = field(default_factory=tuple)
    state: Optional[str] = None
    region: Optional[str] = None
    market_segment: Optional[str] = None


@dataclass(frozen=True)
class RegistryResponse:
    status: int
    payload: Optional[Dict[str, Any]] = None


class RegistryRequestError(Exception):
    """Transport-level failure talking to the company registry."""


def normalize_tax_id(tax_id: Optional[str]) -> str:
    if not tax_id:
        return ""
    return re.sub(r"\D", "", str(tax_id))


def market_segment_for(activity_text: Optional[str]) -> str:
    lowered = (activity_text or "").lower()
    for segment, keywords in MARKET_SEGMENTS:
        if any(keyword in lowered for keyword in keywords):
            return segment
    return OTHER_SEGMENT


def _parse_date(value: Any) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _parse_capital(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def map_registry_payload(tax_id: str, payload: Dict[str, Any]) -> CompanyRecord:
    """Map a registry office payload into a CompanyRecord."""
    company = payload.get("company") or {}
    activity = payload.get("mainActivity") or {}
    address = payload.get("address") or {}

    partners: List[Partner] = []
    for member in company.get("members") or []:
        person = member.get("person") or {}
        role = member.get("role") or {}
        if not person.get("name"):
            continue
        partners.append(
            Partner(
                name=person["name"],
                document=person.get("taxId") or None,
                role=role.get("text") or None,
            )
        )

    activity_id = activity.get("id")
    state = (address.get("state") or "").upper() or None

    return CompanyRecord(
        tax_id=tax_id,
        company_name=company.get("name") or None,
        trade_name=payload.get("alias") or None,
        activity_code=str(activity_id) if activity_id is not None else None,
        activity_description=activity.get("text") or None,
        registered_capital=_parse_capital(company.get("equity")),
        founded_on=_parse_date(payload.get("founded")),
        partners=tuple(partners),
        state=state,
        region=region_for_state(state),
        market_segment=market_segment_for(activity.get("text")),
    )


class CompanyRegistryClient:
    """HTTP client for the public company registry (CNPJá open API)."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = (base_url or settings.company_registry_base_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds

    async def fetch_office(self, tax_id: str) -> RegistryResponse:
        url = f"{self.base_url}/{tax_id}"
        headers = {"Accept": "application/json", "User-Agent": settings.http_user_agent}

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(url, headers=headers) as response:
                    if response.status != 200:
                        return RegistryResponse(status=response.status)
                    payload = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RegistryRequestError("registry request timed out") from e
        except aiohttp.ClientError as e:
            raise RegistryRequestError(str(e)[:200]) from e
        except ValueError as e:
            raise RegistryRequestError("malformed registry response") from e

        return RegistryResponse(status=200, payload=payload if isinstance(payload, dict) else None)


class CompanyEnricher:
    """Registry lookups under the shared rate limiter, with retry and backoff.

    Every attempt takes a limiter slot first. 429, 5xx and transport
    errors back off ``base_delay_ms * 2 ** (attempt - 1)``; other statuses
    stop immediately. Nothing here raises for an unavailable registry.
    """

    def __init__(
        self,
        client: CompanyRegistryClient,
        rate_limiter: RegistryRateLimiter,
        max_attempts: int = 5,
        base_delay_ms: int = 90000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.rate_limiter = rate_limiter
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep

    def backoff_ms(self, attempt: int) -> int:
        return self.base_delay_ms * (2 ** (attempt - 1))

    async def fetch(self, tax_id: str) -> Optional[CompanyRecord]:
        return (await self.fetch_detailed(tax_id)).value

    async def fetch_detailed(self, tax_id: str) -> StageOutcome[Optional[CompanyRecord]]:
        normalized = normalize_tax_id(tax_id)
        if len(normalized) != TAX_ID_LENGTH:
            logger.warning("company.invalid_tax_id", tax_id=tax_id)
            return StageOutcome.fallback(None, outcome.INVALID_TAX_ID)

        reason = outcome.NETWORK_ERROR
        for attempt in range(1, self.max_attempts + 1):
            if not await self.rate_limiter.try_consume():
                logger.info("company.rate_limited", tax_id=normalized, attempt=attempt)
                await self.rate_limiter.wait_until_available()

            try:
                response = await self.client.fetch_office(normalized)
            except RegistryRequestError as e:
                reason = outcome.NETWORK_ERROR
                logger.warning(
                    "company.request_failed",
                    tax_id=normalized,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(e),
                )
            else:
                if response.status == 200 and response.payload is not None:
                    record = map_registry_payload(normalized, response.payload)
                    logger.info(
                        "company.fetched",
                        tax_id=normalized,
                        attempt=attempt,
                        activity_code=record.activity_code,
                    )
                    return StageOutcome.ok(record, outcome.FETCHED)

                if response.status == 429:
                    reason = outcome.QUOTA_EXHAUSTED
                elif response.status >= 500:
                    reason = outcome.SERVER_ERROR
                else:
                    # Permanent: unknown tax id or rejected request
                    reason = outcome.NOT_FOUND if response.status in (200, 404) else outcome.CLIENT_ERROR
                    logger.info("company.not_found", tax_id=normalized, status=response.status)
                    return StageOutcome.fallback(None, reason)

                logger.warning(
                    "company.retryable_status",
                    tax_id=normalized,
                    status=response.status,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                )

            if attempt < self.max_attempts:
                delay_ms = self.backoff_ms(attempt)
                logger.info("company.backoff", tax_id=normalized, attempt=attempt, delay_ms=delay_ms)
                await self._sleep(delay_ms / 1000.0)

        logger.error("company.attempts_exhausted", tax_id=normalized, attempts=self.max_attempts, reason=reason)
        return StageOutcome.fallback(None, reason)
