# leadenrich/db/session.py
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from leadenrich.core.config import settings
from leadenrich.core.exceptions import DatabaseError
from leadenrich.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Global engine instance
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def create_database_engine() -> AsyncEngine:
    """Create and configure the async database engine."""
    global engine, AsyncSessionLocal

    if engine is not None:
        return engine

    if settings.is_testing:
        # Use NullPool for tests to ensure clean state
        engine = create_async_engine(
            settings.database_url,
            poolclass=NullPool,
            echo=settings.debug,
        )
    else:
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
            echo=settings.debug,
            connect_args={
                "command_timeout": 60,
                "server_settings": {"application_name": "leadenrich"},
            },
        )

    AsyncSessionLocal = make_session_factory(engine)

    logger.info(
        "database.engine.created",
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        testing=settings.is_testing,
    )

    return engine


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if AsyncSessionLocal is None:
        create_database_engine()
    return AsyncSessionLocal


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    session = get_session_factory()()

    try:
        yield session
    except SQLAlchemyError as e:
        logger.error("database.session_error", error=str(e))
        await session.rollback()
        raise DatabaseError(
            message="Database session error",
            details={"error": str(e)},
        ) from e
    finally:
        await session.close()


@asynccontextmanager
async def transaction_session() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database transactions."""
    session = get_session_factory()()

    try:
        async with session.begin():
            yield session
    except SQLAlchemyError as e:
        logger.error("database.transaction_error", error=str(e))
        raise DatabaseError(
            message="Database transaction failed",
            details={"error": str(e)},
        ) from e
    finally:
        await session.close()


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None
    logger.info("database.engine.disposed")


async def health_check() -> dict:
    """Check database health."""
    try:
        async with get_session_factory()() as session:
            result = await session.execute(text("SELECT 1"))
            value = result.scalar()
        return {
            "status": "healthy" if value == 1 else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as e:
        logger.error("database.health_check_failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
