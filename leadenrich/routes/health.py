# leadenrich/routes/health.py
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from leadenrich import __version__
from leadenrich.core.config import settings
from leadenrich.core.logging import get_structlog_logger
from leadenrich.db.session import health_check as database_health_check
from leadenrich.services.redis import health_check as redis_health_check

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["health"])

_started_at = time.monotonic()


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    version: str
    timestamp: str
    uptime: float
    checks: Dict[str, Dict[str, Any]]
    dependencies: List[str]


def overall_status(checks: Dict[str, Dict[str, Any]]) -> str:
    for result in checks.values():
        if result.get("status") != "healthy":
            return "unhealthy"
    return "healthy"


@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Database and Redis connectivity."""
    database_result, redis_result = await asyncio.gather(
        database_health_check(),
        redis_health_check(),
    )
    checks = {"database": database_result, "redis": redis_result}
    current = overall_status(checks)

    dependencies = ["postgresql", "redis"]
    if settings.sentry_dsn:
        dependencies.append("sentry")

    response = HealthCheckResponse(
        status=current,
        service="leadenrich",
        environment=settings.environment,
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=time.monotonic() - _started_at,
        checks=checks,
        dependencies=dependencies,
    )

    if current == "healthy":
        logger.info("health.check", status=current)
        return response

    logger.warning("health.check", status=current, checks=checks)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(),
    )


@router.get("/health/live")
async def liveness_probe():
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
