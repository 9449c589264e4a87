import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from leadenrich.services.rate_limiter import RegistryRateLimiter


@pytest.mark.asyncio
async def test_five_requests_per_window_then_refused(redis_client):
    limiter = RegistryRateLimiter(redis_client, points=5, window_ms=60000)

    results = [await limiter.try_consume() for _ in range(6)]

    assert results == [True, True, True, True, True, False]


@pytest.mark.asyncio
async def test_status_reports_blocked_window(redis_client):
    limiter = RegistryRateLimiter(redis_client, points=2, window_ms=60000)
    await limiter.try_consume()

    status = await limiter.status()
    assert status.remaining == 1
    assert status.blocked is False

    await limiter.try_consume()
    status = await limiter.status()
    assert status.remaining == 0
    assert status.blocked is True
    assert 0 < status.reset_in_ms <= 60000


@pytest.mark.asyncio
async def test_status_without_window(redis_client):
    limiter = RegistryRateLimiter(redis_client, points=5)

    status = await limiter.status()

    assert status.to_dict() == {"remaining": 5, "reset_in_ms": 0, "blocked": False}


@pytest.mark.asyncio
async def test_window_expiry_restores_quota(redis_client):
    limiter = RegistryRateLimiter(redis_client, points=1, window_ms=50)

    assert await limiter.try_consume() is True
    assert await limiter.try_consume() is False

    await asyncio.sleep(0.2)

    assert await limiter.try_consume() is True


@pytest.mark.asyncio
async def test_limiters_share_the_same_window(redis_client):
    first = RegistryRateLimiter(redis_client, points=3)
    second = RegistryRateLimiter(redis_client, points=3)

    assert await first.try_consume()
    assert await second.try_consume()
    assert await first.try_consume()
    assert await second.try_consume() is False


@pytest.mark.asyncio
async def test_wait_until_available_sleeps_at_least_poll_interval(redis_client, sleep):
    limiter = RegistryRateLimiter(redis_client, points=1, window_ms=60000, poll_interval=0.1, sleep=sleep)
    limiter.try_consume = AsyncMock(side_effect=[False, False, True])
    limiter.status = AsyncMock(return_value=SimpleNamespace(reset_in_ms=0))

    await limiter.wait_until_available()

    assert sleep.calls == [1.0, 1.0]


@pytest.mark.asyncio
async def test_wait_until_available_sleeps_until_reset(redis_client, sleep):
    limiter = RegistryRateLimiter(redis_client, points=1, window_ms=60000, sleep=sleep)
    await limiter.try_consume()

    original = limiter.try_consume
    calls = {"n": 0}

    async def consume_after_first_wait():
        calls["n"] += 1
        if calls["n"] > 1:
            await limiter.reset()
        return await original()

    limiter.try_consume = consume_after_first_wait

    await limiter.wait_until_available()

    assert len(sleep.calls) == 1
    assert 1.0 <= sleep.calls[0] <= 60.0


@pytest.mark.asyncio
async def test_redis_failure_fails_open():
    broken = MagicMock()
    broken.pipeline.side_effect = RedisConnectionError("down")
    limiter = RegistryRateLimiter(broken)

    assert await limiter.try_consume() is True
