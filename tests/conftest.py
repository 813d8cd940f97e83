"""Shared fixtures: in-memory database, in-memory cache, fake renderer."""

import fnmatch
import time
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dropwatch.db.models import Base, Product, Retailer
from dropwatch.ingest.fetchers.headless import RenderedPage


class FakeCache:
    """Dict-backed stand-in for RedisCache with TTL support."""

    def __init__(self):
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        _, expires = entry
        if expires is not None and time.monotonic() >= expires:
            del self._data[key]
            return False
        return True

    async def ttl(self, key: str) -> Optional[float]:
        if not self._live(key):
            return None
        expires = self._data[key][1]
        return None if expires is None else expires - time.monotonic()

    async def get(self, key):
        return self._data[key][0] if self._live(key) else None

    async def set(self, key, value, ttl_seconds=None):
        expires = time.monotonic() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires)

    async def set_if_absent(self, key, value, ttl_seconds):
        if self._live(key):
            return False
        await self.set(key, value, ttl_seconds)
        return True

    async def exists(self, key):
        return self._live(key)

    async def delete(self, key):
        self._data.pop(key, None)

    async def keys(self, pattern, limit=None):
        found = [k for k in list(self._data) if self._live(k) and fnmatch.fnmatchcase(k, pattern)]
        return found[:limit] if limit is not None else found

    async def close(self):
        pass


class FakeRenderer:
    """Renderer returning canned HTML and recording every call."""

    def __init__(self, html: str = "<html></html>", status_code: int = 200):
        self.html = html
        self.status_code = status_code
        self.calls: list[str] = []

    async def render(self, url, identity, timeout, proxy=None):
        self.calls.append(url)
        return RenderedPage(status_code=self.status_code, html=self.html)

    async def close(self):
        pass


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(session_factory):
    """Retailers best-buy (1), walmart (2), target (3, inactive) and products 1-6."""
    async with session_factory() as db:
        db.add_all([
            Retailer(id=1, slug="best-buy", name="Best Buy", is_active=True),
            Retailer(id=2, slug="walmart", name="Walmart", is_active=True),
            Retailer(id=3, slug="target", name="Target", is_active=False),
        ])
        db.add_all([
            Product(id=i, name=f"Pokemon TCG Product {i}", is_active=True, popularity_score=float(10 - i))
            for i in range(1, 7)
        ])
        await db.commit()
    return session_factory


@pytest.fixture
def fake_cache():
    return FakeCache()
