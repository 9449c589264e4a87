# leadenrich/services/postal_cache.py
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

from leadenrich.core.logging import get_structlog_logger
from leadenrich.services.redis import RedisCache

logger = get_structlog_logger(__name__)

_NON_DIGITS = re.compile(r"\D")
POSTAL_CODE_LENGTH = 8


def normalize_postal_code(code: Optional[str]) -> str:
    if not code:
        return ""
    return _NON_DIGITS.sub("", str(code))


def is_postal_code(code: Optional[str]) -> bool:
    return len(normalize_postal_code(code)) == POSTAL_CODE_LENGTH


@dataclass(frozen=True)
class PostalCacheEntry:
    postal_code: str
    payload: Dict[str, Any]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "postal_code": self.postal_code,
            "payload": self.payload,
            "expires_at": self.expires_at,
        }


class PostalCache:
    """Postal lookup results keyed by normalized postal code."""

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = RedisCache(redis_client, prefix="postal")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def get(self, code: str) -> Optional[PostalCacheEntry]:
        key = normalize_postal_code(code)
        if len(key) != POSTAL_CODE_LENGTH:
            return None

        raw = await self.cache.get(key)
        if not isinstance(raw, dict):
            return None

        entry = PostalCacheEntry(
            postal_code=key,
            payload=raw.get("payload") or {},
            expires_at=float(raw.get("expires_at", 0)),
        )
        if entry.is_expired(self._clock()):
            logger.debug("postal_cache.expired", postal_code=key)
            await self.cache.delete(key)
            return None

        return entry

    async def put(self, code: str, payload: Dict[str, Any], ttl: Optional[int] = None) -> PostalCacheEntry:
        key = normalize_postal_code(code)
        if len(key) != POSTAL_CODE_LENGTH:
            raise ValueError(f"invalid postal code: {code!r}")

        if ttl is None:
            ttl = self.ttl_seconds
        entry = PostalCacheEntry(
            postal_code=key,
            payload=dict(payload),
            expires_at=self._clock() + ttl,
        )
        # Plain SET: concurrent writers resolve last-write-wins
        stored = await self.cache.set(key, entry.to_dict(), expire=ttl)
        if not stored:
            logger.warning("postal_cache.write_failed", postal_code=key)
        return entry
