# leadenrich/services/redis.py
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff

from leadenrich.core.config import settings
from leadenrich.core.exceptions import ServiceUnavailableError
from leadenrich.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Global Redis connection pool
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


async def init_redis_pool() -> None:
    """Initialize Redis connection pool."""
    global _redis_pool, _redis_client

    if _redis_pool is not None:
        return

    try:
        retry = Retry(backoff=ExponentialBackoff(), retries=3)

        _redis_pool = ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_connect_timeout,
            retry=retry,
            retry_on_error=[redis.ConnectionError, redis.TimeoutError],
            health_check_interval=30,
            decode_responses=True,
            encoding="utf-8",
        )

        _redis_client = redis.Redis(connection_pool=_redis_pool)

        await _redis_client.ping()

        logger.info(
            "redis.connected",
            url=settings.redis_url,
            max_connections=settings.redis_max_connections,
        )

    except Exception as e:
        _redis_pool = None
        _redis_client = None
        logger.error("redis.connection_failed", error=str(e))
        raise ServiceUnavailableError(
            message="Redis connection failed",
            details={"error": str(e), "url": settings.redis_url},
        ) from e


async def get_redis_client() -> redis.Redis:
    """Get Redis client instance."""
    if _redis_client is None:
        await init_redis_pool()

    return _redis_client


async def close_redis_pool() -> None:
    """Close Redis connection pool."""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("redis.connections_closed")


class RedisCache:
    """High-level Redis cache operations."""

    def __init__(self, redis_client: redis.Redis, prefix: str = "cache"):
        self.redis = redis_client
        self.prefix = prefix

    def _make_key(self, key: str) -> str:
        """Create namespaced key."""
        return f"{self.prefix}:{key}"

    async def get(self, key: str, default: Any = None) -> Any:
        """Get value from cache."""
        try:
            value = await self.redis.get(self._make_key(key))

            if value is None:
                return default

            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value

        except Exception as e:
            logger.error("cache.get_error", key=key, error=str(e))
            return default

    async def set(
        self,
        key: str,
        value: Any,
        expire: Optional[int] = None
    ) -> bool:
        """Set value in cache."""
        try:
            full_key = self._make_key(key)

            if isinstance(value, (dict, list, tuple)):
                value = json.dumps(value)

            if expire:
                await self.redis.setex(full_key, expire, value)
            else:
                await self.redis.set(full_key, value)

            return True

        except Exception as e:
            logger.error("cache.set_error", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete value from cache."""
        try:
            result = await self.redis.delete(self._make_key(key))
            return result > 0

        except Exception as e:
            logger.error("cache.delete_error", key=key, error=str(e))
            return False


async def health_check() -> Dict[str, Any]:
    """Check Redis health."""
    try:
        client = await get_redis_client()

        loop = asyncio.get_running_loop()
        start_time = loop.time()
        pong = await client.ping()
        response_time = (loop.time() - start_time) * 1000

        if not pong:
            return {
                "status": "unhealthy",
                "error": "Ping failed",
                "response_time_ms": response_time,
            }

        info = await client.info()

        return {
            "status": "healthy",
            "response_time_ms": response_time,
            "version": info.get("redis_version"),
            "clients": {
                "connected_clients": info.get("connected_clients"),
                "blocked_clients": info.get("blocked_clients"),
            },
        }

    except Exception as e:
        logger.error("redis.health_check_failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "response_time_ms": None,
        }
