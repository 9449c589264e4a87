# leadenrich/services/rate_limiter.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import redis.asyncio as redis
from redis.exceptions import RedisError

from leadenrich.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

DEFAULT_KEY = "ratelimit:company_registry"


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int
    reset_in_ms: int
    blocked: bool

    def to_dict(self) -> dict:
        return {
            "remaining": self.remaining,
            "reset_in_ms": self.reset_in_ms,
            "blocked": self.blocked,
        }


class RegistryRateLimiter:
    """Fixed-window quota shared by every worker through Redis.

    The window opens on the first consumption and lasts ``window_ms``; at
    most ``points`` consumptions succeed inside it.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        points: int = 5,
        window_ms: int = 60000,
        poll_interval: float = 1.0,
        key: str = DEFAULT_KEY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if points < 1:
            raise ValueError("points must be >= 1")
        self.redis = redis_client
        self.points = points
        self.window_ms = window_ms
        self.poll_interval = max(1.0, poll_interval)
        self.key = key
        self._sleep = sleep

    async def try_consume(self) -> bool:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self.key, 0, nx=True, px=self.window_ms)
                pipe.incr(self.key)
                pipe.pttl(self.key)
                _, count, ttl = await pipe.execute()

            if ttl is not None and ttl < 0:
                # Key without expiry would block forever
                await self.redis.pexpire(self.key, self.window_ms)

        except RedisError as e:
            logger.error("rate_limiter.consume_failed", key=self.key, error=str(e))
            return True

        allowed = int(count) <= self.points
        if not allowed:
            logger.debug("rate_limiter.refused", key=self.key, count=int(count), reset_in_ms=ttl)
        return allowed

    async def status(self) -> RateLimitStatus:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.get(self.key)
                pipe.pttl(self.key)
                raw_count, ttl = await pipe.execute()
        except RedisError as e:
            logger.error("rate_limiter.status_failed", key=self.key, error=str(e))
            return RateLimitStatus(remaining=self.points, reset_in_ms=0, blocked=False)

        count = int(raw_count or 0)
        reset_in_ms = int(ttl) if ttl is not None and ttl > 0 else 0
        remaining = max(0, self.points - count)
        return RateLimitStatus(
            remaining=remaining,
            reset_in_ms=reset_in_ms,
            blocked=remaining == 0 and reset_in_ms > 0,
        )

    async def wait_until_available(self) -> None:
        """Park until a slot is free, then return holding it."""
        while not await self.try_consume():
            current = await self.status()
            delay = max(self.poll_interval, current.reset_in_ms / 1000.0)
            logger.info(
                "rate_limiter.blocked",
                key=self.key,
                reset_in_ms=current.reset_in_ms,
                sleep_seconds=delay,
            )
            await self._sleep(delay)

    async def reset(self) -> None:
        await self.redis.delete(self.key)
