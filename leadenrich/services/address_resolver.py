# leadenrich/services/address_resolver.py
from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp

from leadenrich.core.config import settings
from leadenrich.core.logging import get_structlog_logger
from leadenrich.services import outcome
from leadenrich.services.outcome import StageOutcome
from leadenrich.services.postal_cache import PostalCache, is_postal_code, normalize_postal_code

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Address:
    street: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class PostalLookupError(Exception):
    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


# Trailing number: "Rua X, 123", "Rua X nº 123", "Rua X 123"
_TRAILING_NUMBER = re.compile(
    r"(?:\s*,\s*|\s+)(?:n[º°o]?\.?\s*|número\s*)?(\d+[A-Za-z]?)\s*$", re.IGNORECASE
)
# Number after a comma followed by a complement: "Rua X, 123 - Sala 4"
_COMMA_NUMBER = re.compile(r"\s*,\s*(?:n[º°o]?\.?\s*)?(\d+[A-Za-z]?)\b", re.IGNORECASE)
# Leading number: "123 Rua X"
_LEADING_NUMBER = re.compile(r"^\s*(\d+[A-Za-z]?)\b\s*,?\s*")

_NUMBER_PATTERNS = (_COMMA_NUMBER, _TRAILING_NUMBER, _LEADING_NUMBER)


def _split_number(street: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    if not street:
        return street, None
    for pattern in _NUMBER_PATTERNS:
        match = pattern.search(street)
        if match:
            stripped = (street[:match.start()] + " " + street[match.end():]).strip(" ,-")
            stripped = re.sub(r"\s+", " ", stripped)
            return stripped or None, match.group(1)
    return street.strip(), None


def extract_number(street: Optional[str]) -> Optional[str]:
    return _split_number(street)[1]


def strip_number(street: Optional[str]) -> Optional[str]:
    return _split_number(street)[0]


def parse_coordinates(raw: Optional[str]) -> Optional[Coordinates]:
    """Parse a "lat,lon" string."""
    if not raw or "," not in raw:
        return None
    lat_text, lon_text = raw.split(",", 1)
    try:
        latitude, longitude = float(lat_text.strip()), float(lon_text.strip())
    except ValueError:
        return None
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        return None
    return Coordinates(latitude=latitude, longitude=longitude)


def is_valid(address: Address) -> bool:
    return bool(
        address.street
        and address.city
        and address.state
        and is_postal_code(address.postal_code)
    )


def format_address(address: Address) -> str:
    parts = [
        address.street,
        address.number,
        address.complement,
        address.neighborhood,
        address.city,
        address.state,
        address.postal_code,
    ]
    return ", ".join(part for part in parts if part)


class PostalLookupClient:
    """Postal code lookup over HTTP (ViaCEP-compatible)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.base_url = (base_url or settings.postal_lookup_base_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds

    async def lookup(self, postal_code: str) -> Dict[str, Any]:
        code = normalize_postal_code(postal_code)
        url = f"{self.base_url}/{code}/json"
        headers = {"Accept": "application/json", "User-Agent": settings.http_user_agent}

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(url, headers=headers) as response:
                    if response.status == 404 or response.status == 400:
                        raise PostalLookupError(outcome.NOT_FOUND, f"HTTP {response.status}")
                    if response.status >= 400:
                        raise PostalLookupError(outcome.NETWORK_ERROR, f"HTTP {response.status}")
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise PostalLookupError(outcome.TIMEOUT, "postal lookup timed out") from e
        except aiohttp.ClientError as e:
            raise PostalLookupError(outcome.NETWORK_ERROR, str(e)[:200]) from e
        except ValueError as e:
            raise PostalLookupError(outcome.NETWORK_ERROR, "malformed postal lookup response") from e

        if not isinstance(data, dict) or data.get("erro"):
            raise PostalLookupError(outcome.NOT_FOUND, f"postal code {code} not found")
        return data


def parse_geocode_response(data: Any) -> Optional[Coordinates]:
    """First result's location from a geocoding response, or None if there is none."""
    if not isinstance(data, dict):
        return None
    results = data.get("results")
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        return None
    geometry = results[0].get("geometry")
    location = geometry.get("location") if isinstance(geometry, dict) else None
    if not isinstance(location, dict):
        return None
    try:
        return Coordinates(latitude=float(location["lat"]), longitude=float(location["lng"]))
    except (KeyError, TypeError, ValueError):
        return None


class Geocoder:
    """Address to coordinates via the Google Geocoding API."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url or settings.geocoding_base_url
        self.timeout = timeout or settings.http_timeout_seconds

    async def geocode(self, address_text: str) -> Optional[Coordinates]:
        params = {"address": address_text, "key": self.api_key}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(self.base_url, params=params) as response:
                    if response.status != 200:
                        logger.warning("geocoder.http_error", status=response.status)
                        return None
                    data = await response.json(content_type=None)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.warning("geocoder.request_failed", error=str(e)[:200])
            return None
        except ValueError as e:
            logger.warning("geocoder.invalid_body", error=str(e)[:200])
            return None

        return parse_geocode_response(data)


class AddressResolver:
    """Normalizes and validates postal addresses.

    Never raises for lookup failures: a degraded outcome carries the
    caller's own fields instead.
    """

    def __init__(
        self,
        cache: PostalCache,
        lookup_client: PostalLookupClient,
        geocoder: Optional[Geocoder] = None,
        min_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.lookup_client = lookup_client
        self.geocoder = geocoder
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None

    async def resolve(self, partial: Address) -> Address:
        return (await self.resolve_detailed(partial)).value

    async def resolve_detailed(self, partial: Address) -> StageOutcome[Address]:
        address = self._with_split_number(partial)
        postal_code = normalize_postal_code(address.postal_code)

        if len(postal_code) != 8:
            logger.info("address.missing_postal_code", postal_code=address.postal_code)
            return StageOutcome.fallback(address, outcome.MISSING_POSTAL_CODE)

        cached = await self.cache.get(postal_code)
        if cached is not None:
            logger.debug("address.cache_hit", postal_code=postal_code)
            return StageOutcome.ok(self._merge(cached.payload, address), outcome.CACHE_HIT)

        try:
            await self._throttle()
            payload = await self.lookup_client.lookup(postal_code)
        except PostalLookupError as e:
            logger.warning("address.lookup_failed", postal_code=postal_code, reason=e.reason, error=str(e))
            return StageOutcome.fallback(address, e.reason)

        await self.cache.put(postal_code, payload)

        coordinates = await self._geocode(payload, postal_code)

        logger.info("address.resolved", postal_code=postal_code, geocoded=coordinates is not None)
        return StageOutcome.ok(self._merge(payload, address, coordinates), outcome.LOOKUP)

    async def _geocode(self, payload: Dict[str, Any], postal_code: str) -> Optional[Coordinates]:
        if self.geocoder is None:
            return None
        try:
            return await self.geocoder.geocode(self._geocode_query(payload, postal_code))
        except Exception as e:
            # Coordinates are optional; the validated address stands without them
            logger.warning("address.geocode_failed", postal_code=postal_code, error=str(e)[:200])
            return None

    @staticmethod
    def is_valid(address: Address) -> bool:
        return is_valid(address)

    @staticmethod
    def _with_split_number(partial: Address) -> Address:
        if partial.number or not partial.street:
            return partial
        street, number = _split_number(partial.street)
        if not number:
            return partial
        return replace(partial, street=street, number=number)

    @staticmethod
    def _merge(
        payload: Dict[str, Any],
        address: Address,
        coordinates: Optional[Coordinates] = None,
    ) -> Address:
        return replace(
            address,
            street=payload.get("logradouro") or address.street,
            neighborhood=payload.get("bairro") or address.neighborhood,
            city=payload.get("localidade") or address.city,
            state=payload.get("uf") or address.state,
            postal_code=normalize_postal_code(address.postal_code),
            coordinates=coordinates or address.coordinates,
        )

    @staticmethod
    def _geocode_query(payload: Dict[str, Any], postal_code: str) -> str:
        parts = [payload.get("logradouro"), payload.get("localidade"), payload.get("uf"), postal_code]
        return ", ".join(part for part in parts if part)

    async def _throttle(self) -> None:
        async with self._lock:
            if self._last_request_at is not None:
                elapsed = self._clock() - self._last_request_at
                if elapsed < self.min_interval:
                    wait = self.min_interval - elapsed
                    logger.debug("address.throttled", wait_seconds=wait)
                    await self._sleep(wait)
            self._last_request_at = self._clock()
