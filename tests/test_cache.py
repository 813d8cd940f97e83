"""Tests against a real redis server (skipped when none is reachable)."""

import asyncio

import pytest
import redis.asyncio as redis

from dropwatch.cache import RedisCache
from dropwatch.config import settings
from dropwatch.ingest.rate_limiter import RateLimiter


async def _redis_available() -> bool:
    try:
        client = await redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.close()
        return True
    except Exception:
        return False


@pytest.mark.asyncio
async def test_set_get_and_expiry():
    if not await _redis_available():
        pytest.skip("Redis not available")

    cache = RedisCache()
    key = "dropwatch-test:expiry"
    await cache.set(key, "1", ttl_seconds=1)
    assert await cache.get(key) == "1"
    assert await cache.exists(key)
    assert 0 <= await cache.ttl(key) <= 1

    await asyncio.sleep(1.5)
    assert await cache.get(key) is None
    assert await cache.ttl(key) is None
    await cache.close()


@pytest.mark.asyncio
async def test_set_if_absent_and_keys():
    if not await _redis_available():
        pytest.skip("Redis not available")

    cache = RedisCache()
    for key in await cache.keys("dropwatch-test:nx:*"):
        await cache.delete(key)

    assert await cache.set_if_absent("dropwatch-test:nx:a", "1", 30) is True
    assert await cache.set_if_absent("dropwatch-test:nx:a", "2", 30) is False
    await cache.set("dropwatch-test:nx:b", "1", 30)

    assert sorted(await cache.keys("dropwatch-test:nx:*")) == ["dropwatch-test:nx:a", "dropwatch-test:nx:b"]
    assert len(await cache.keys("dropwatch-test:nx:*", limit=1)) == 1

    for key in ("dropwatch-test:nx:a", "dropwatch-test:nx:b"):
        await cache.delete(key)
    await cache.close()


@pytest.mark.asyncio
async def test_shared_politeness_timestamp():
    if not await _redis_available():
        pytest.skip("Redis not available")

    cache = RedisCache()
    limiter = RateLimiter()
    limiter.set_shared_store(cache)

    await limiter.acquire("dropwatch-test-shop", 0.0)
    assert await cache.exists("politeness:last:dropwatch-test-shop")

    await cache.delete("politeness:last:dropwatch-test-shop")
    await cache.close()
