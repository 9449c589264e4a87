# leadenrich/main.py
from __future__ import annotations

import time
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from leadenrich import __version__
from leadenrich.core.config import settings
from leadenrich.core.exceptions import BaseAPIException
from leadenrich.core.logging import configure_structlog, get_structlog_logger
from leadenrich.db.session import dispose_engine, get_session_factory
from leadenrich.routes import health, monitoring
from leadenrich.runtime import init_runtime, reset_runtime
from leadenrich.services.redis import close_redis_pool, get_redis_client, init_redis_pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger = get_structlog_logger(__name__)

    # Startup
    logger.info("application.starting", environment=settings.environment)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[
                AsyncioIntegration(),
                FastApiIntegration(),
                StarletteIntegration(),
            ],
            traces_sample_rate=1.0 if settings.is_development else 0.1,
            send_default_pii=False,
        )
        logger.info("sentry.initialized")

    await init_redis_pool()
    redis_client = await get_redis_client()

    runtime = init_runtime(redis_client, get_session_factory())
    await runtime.scoring_store.ensure_default()
    await runtime.scheduler.start()

    logger.info("application.started")
    yield

    # Shutdown
    logger.info("application.shutting_down")

    await runtime.scheduler.stop()
    await runtime.recalculation.wait_idle()
    reset_runtime()

    await close_redis_pool()
    await dispose_engine()

    logger.info("application.shutdown_complete")


# Configure logging before creating app
configure_structlog()
logger = get_structlog_logger(__name__)

app = FastAPI(
    title="Lead Enrichment",
    version=__version__,
    description="Enrichment and potential scoring pipeline for company leads",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Handle service exceptions."""
    logger.warning(
        "api.exception",
        status_code=exc.status_code,
        code=exc.code,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.warning("validation.error", path=request.url.path, errors=errors)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "validation_error",
            "message": "Request validation failed",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    error_id = f"err_{int(time.time())}_{hash(str(exc)) % 10000:04d}"
    logger.error(
        "unhandled.exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    message = f"Internal server error: {exc}" if settings.is_development else "Internal server error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"code": "internal_error", "message": message, "details": {"error_id": error_id}},
        headers={"X-Error-ID": error_id},
    )


app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(monitoring.router, prefix=settings.api_prefix, tags=["monitoring"])

# Add Prometheus metrics
if not settings.is_testing:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
async def root():
    return {
        "name": "Lead Enrichment",
        "version": app.version,
        "environment": settings.environment,
        "health": f"{settings.api_prefix}/health",
    }


logger.info("application.configured", environment=settings.environment)
