# leadenrich/services/outcome.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


# Reason codes for stage outcomes
CACHE_HIT = "cache_hit"
LOOKUP = "lookup"
NOT_FOUND = "not_found"
TIMEOUT = "timeout"
NETWORK_ERROR = "network_error"
MISSING_POSTAL_CODE = "missing_postal_code"
FETCHED = "fetched"
QUOTA_EXHAUSTED = "quota_exhausted"
SERVER_ERROR = "server_error"
CLIENT_ERROR = "client_error"
INVALID_TAX_ID = "invalid_tax_id"


@dataclass(frozen=True)
class StageOutcome(Generic[T]):
    """Result of a pipeline stage that absorbs its own expected failures.

    ``degraded`` is true when ``value`` is a fallback rather than the
    enriched result; ``reason`` says why.
    """

    value: T
    degraded: bool = False
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: T, reason: Optional[str] = None) -> "StageOutcome[T]":
        return cls(value=value, degraded=False, reason=reason)

    @classmethod
    def fallback(cls, value: T, reason: str) -> "StageOutcome[T]":
        return cls(value=value, degraded=True, reason=reason)
