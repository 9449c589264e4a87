# leadenrich/core/logging.py
from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from leadenrich.core.config import settings


def configure_structlog() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    timestamper = structlog.processors.TimeStamper(fmt="iso")
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


def bind_job_context(**values: Any) -> None:
    """Bind job identifiers (job_id, lead_id, ...) to the structlog context."""
    structlog.contextvars.bind_contextvars(**values)


def clear_job_context() -> None:
    structlog.contextvars.clear_contextvars()
