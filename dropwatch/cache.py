"""Redis-backed key/value store shared by the scheduler, signal dedupe and limiter."""

import logging
from typing import Optional

import redis.asyncio as redis

from dropwatch.config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Thin async wrapper around a lazily created redis connection."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._redis: redis.Redis | None = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_redis()
        return await client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Set a key, with an expiry when ``ttl_seconds`` is given."""
        client = await self._get_redis()
        if ttl_seconds:
            await client.setex(key, ttl_seconds, value)
        else:
            await client.set(key, value)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically set a key only if it does not exist. Returns True if set."""
        client = await self._get_redis()
        return bool(await client.set(key, value, ex=ttl_seconds, nx=True))

    async def exists(self, key: str) -> bool:
        client = await self._get_redis()
        return await client.exists(key) > 0

    async def ttl(self, key: str) -> Optional[int]:
        """Seconds until ``key`` expires; None when it is missing or has no expiry."""
        client = await self._get_redis()
        remaining = await client.ttl(key)
        return remaining if remaining >= 0 else None

    async def delete(self, key: str) -> None:
        client = await self._get_redis()
        await client.delete(key)

    async def keys(self, pattern: str, limit: Optional[int] = None) -> list[str]:
        """Return keys matching ``pattern`` using SCAN (stops early at ``limit``)."""
        client = await self._get_redis()
        found: list[str] = []
        async for key in client.scan_iter(match=pattern, count=100):
            found.append(key)
            if limit is not None and len(found) >= limit:
                break
        return found


cache = RedisCache()
