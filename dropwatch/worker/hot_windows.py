"""Hot-window markers.

Predicted drop windows for popular products are written to the cache as
short-lived markers that expire with their window. A marker is only ever
extended, so a shorter window never cuts an active one short. The
availability scan reads them to decide which pairs to check first and how
often to run.
"""

import json
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from dropwatch import metrics
from dropwatch.cache import RedisCache, cache
from dropwatch.config import settings
from dropwatch.db.models import Product, Retailer
from dropwatch.predict.engine import DropPredictionEngine, PredictionQuery, prediction_engine
from dropwatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

HOT_PREFIX = "scan:hot:"


def retailer_key(slug: str) -> str:
    return f"{HOT_PREFIX}{slug}"


def product_key(product_id: int, slug: str) -> str:
    return f"{HOT_PREFIX}product:{product_id}:{slug}"


class HotWindowScheduler:
    """Writes and reads hot-window markers."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        cache_store: Optional[RedisCache] = None,
        engine: Optional[DropPredictionEngine] = None,
    ):
        if session_factory is None:
            from dropwatch.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.cache = cache_store or cache
        self.engine = engine or prediction_engine

    async def refresh_hot_windows(
        self, top_products: Optional[int] = None, horizon_minutes: Optional[int] = None
    ) -> int:
        """
        Predict windows for the top products at each allowed retailer and mark them hot.

        Args:
            top_products: Number of products by popularity (clamped to 5..200)
            horizon_minutes: Prediction horizon (clamped to 60..1440)

        Returns:
            Number of windows marked
        """
        top = max(5, min(top_products or settings.hot_window_top_products, 200))
        horizon = max(60, min(horizon_minutes or settings.hot_window_horizon_minutes, 1440))

        async with self.session_factory() as db:
            retailer_rows = await db.execute(
                select(Retailer.slug).where(
                    Retailer.is_active.is_(True),
                    Retailer.slug.in_(settings.hot_window_retailers),
                )
            )
            slugs = list(retailer_rows.scalars().all())
            if not slugs:
                logger.info("No active retailers on the hot-window allow-list")
                return 0

            product_rows = await db.execute(
                select(Product.id)
                .where(Product.is_active.is_(True))
                .order_by(Product.popularity_score.desc())
                .limit(top)
            )
            product_ids = list(product_rows.scalars().all())

        marked = 0
        for product_id in product_ids:
            for slug in slugs:
                try:
                    marked += await self._mark_pair(product_id, slug, horizon)
                except Exception as e:
                    logger.warning(f"Hot window refresh failed for product {product_id} at {slug}: {e}")

        logger.info(
            f"Hot windows refreshed: {marked} markers for {len(product_ids)} products "
            f"x {len(slugs)} retailers"
        )
        return marked

    async def _mark_pair(self, product_id: int, slug: str, horizon: int) -> int:
        windows = await self.engine.predict_windows(PredictionQuery(
            product_id=product_id,
            retailer_slug=slug,
            horizon_minutes=horizon,
            top_k=settings.hot_window_top_k,
        ))
        marked = 0
        for window in windows:
            ttl = int((window.end - utcnow()).total_seconds())
            if ttl <= 0:
                continue
            payload = json.dumps({
                "start": window.start.isoformat() + "Z",
                "end": window.end.isoformat() + "Z",
                "conf": window.confidence,
            })
            await self._extend(retailer_key(slug), "1", ttl)
            await self._extend(product_key(product_id, slug), payload, ttl)
            metrics.record_hot_marker(slug)
            marked += 1
        return marked

    async def _extend(self, key: str, value: str, ttl: int) -> bool:
        """Write a marker unless an existing one already outlives ``ttl``."""
        current = await self.cache.ttl(key)
        if current is not None and current >= ttl:
            return False
        await self.cache.set(key, value, ttl)
        return True

    async def has_active_hot_window(self) -> bool:
        """True if any hot marker currently exists; False when the cache is unreachable."""
        try:
            return len(await self.cache.keys(f"{HOT_PREFIX}*", limit=1)) > 0
        except Exception as e:
            logger.warning(f"Hot window check failed: {e}")
            return False

    async def active_windows(self) -> list[dict]:
        """Active product markers as dicts with product_id and retailer."""
        prefix = f"{HOT_PREFIX}product:"
        found = []
        for key in await self.cache.keys(f"{prefix}*"):
            product_id, _, slug = key[len(prefix):].partition(":")
            raw = await self.cache.get(key)
            if raw is None:
                continue
            window = json.loads(raw)
            found.append({"product_id": int(product_id), "retailer": slug, **window})
        return found

    async def is_hot(self, product_id: int, slug: str) -> bool:
        return await self.cache.exists(product_key(product_id, slug))


# Global scheduler instance
hot_windows = HotWindowScheduler()
