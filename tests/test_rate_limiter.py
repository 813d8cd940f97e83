"""Tests for politeness limiting and the per-minute request window."""

import pytest

from conftest import FakeCache
from dropwatch.ingest.errors import ErrorType, RetailerError
from dropwatch.ingest.rate_limiter import RateLimiter, RequestWindow


@pytest.mark.asyncio
async def test_second_request_waits_for_interval():
    limiter = RateLimiter()
    assert await limiter.acquire("target", 0.05) == 0.0
    waited = await limiter.acquire("target", 0.05)
    assert 0.0 < waited <= 0.05


@pytest.mark.asyncio
async def test_adapters_are_limited_independently():
    limiter = RateLimiter()
    await limiter.acquire("target", 5.0)
    assert await limiter.acquire("costco", 5.0) == 0.0
    assert len(limiter.locks) == 0


@pytest.mark.asyncio
async def test_reset_forgets_last_request():
    limiter = RateLimiter()
    await limiter.acquire("target", 5.0)
    limiter.reset("target")
    assert await limiter.acquire("target", 5.0) == 0.0


@pytest.mark.asyncio
async def test_shared_store_records_last_request():
    cache = FakeCache()
    limiter = RateLimiter(shared_store=cache)
    await limiter.acquire("walmart", 0.01)
    assert await cache.get("politeness:last:walmart") is not None


def test_request_window_raises_rate_limit():
    window = RequestWindow()
    window.check("gamestop", 2)
    window.check("gamestop", 2)
    with pytest.raises(RetailerError) as exc_info:
        window.check("gamestop", 2)
    assert exc_info.value.error_type == ErrorType.RATE_LIMIT
    assert exc_info.value.retryable is True
    assert window.hits["gamestop"] == 1
