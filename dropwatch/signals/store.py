"""Signal log and drop outcome store.

Signals are appended to ``drop_events`` and never updated. Drop outcomes are
derived per (product, retailer) occurrence with earliest-wins updates, so
replayed or out-of-order calls converge to the same row.
"""

import hashlib
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dropwatch import metrics
from dropwatch.config import settings
from dropwatch.db.models import AvailabilitySnapshot, DropEvent, DropOutcome, Retailer
from dropwatch.ingest.base import AvailabilityRecord
from dropwatch.utils.locks import KeyedLocks
from dropwatch.utils.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

SIGNAL_TYPES = ("url_seen", "url_live", "price_present", "in_stock", "status_change")


def _buy_window(first_seen_at: Optional[datetime], first_instock_at: datetime) -> int:
    start = first_seen_at or first_instock_at
    return max(0, int((first_instock_at - start).total_seconds()))


class SignalStore:
    """Appends signals and maintains drop outcomes."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None, cache=None):
        """
        Args:
            session_factory: Async session factory (defaults to the app's)
            cache: RedisCache used for signal dedupe; None disables dedupe
        """
        if session_factory is None:
            from dropwatch.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.cache = cache
        self._outcome_locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    @staticmethod
    def dedupe_key(product_id: int, retailer_id: int, signal_type: str, value: Optional[str]) -> str:
        digest = hashlib.sha1((value or "").encode()).hexdigest()[:10]
        return f"dropsig:{product_id}:{retailer_id}:{signal_type}:{digest}"

    async def record_signal(
        self,
        product_id: int,
        retailer_id: int,
        signal_type: str,
        observed_at: Optional[datetime] = None,
        value: Optional[str] = None,
        source: Optional[str] = None,
        confidence: Optional[float] = None,
        dedupe: bool = False,
    ) -> bool:
        """
        Append one signal event.

        Args:
            product_id: Product id
            retailer_id: Retailer row id
            signal_type: One of SIGNAL_TYPES
            observed_at: When the signal was observed (defaults to now)
            value: Signal payload (URL, price, status)
            source: Producer name
            confidence: Producer confidence (0.0-1.0)
            dedupe: Suppress identical signals seen within the dedupe TTL

        Returns:
            True if appended, False if suppressed as a duplicate
        """
        if signal_type not in SIGNAL_TYPES:
            raise ValueError(f"Unknown signal type: {signal_type}")

        if dedupe and self.cache is not None:
            key = self.dedupe_key(product_id, retailer_id, signal_type, value)
            try:
                fresh = await self.cache.set_if_absent(key, "1", settings.signal_dedupe_ttl_seconds)
            except Exception as e:
                logger.warning(f"Signal dedupe unavailable, appending anyway: {e}")
                fresh = True
            if not fresh:
                metrics.record_signal_deduped(signal_type)
                return False

        observed_at = to_naive_utc(observed_at) if observed_at else utcnow()
        async with self.session_factory() as db:
            db.add(DropEvent(
                product_id=product_id,
                retailer_id=retailer_id,
                signal_type=signal_type,
                signal_value=value,
                source=source,
                confidence=confidence,
                observed_at=observed_at,
            ))
            await db.commit()

        metrics.record_signal(str(retailer_id), signal_type)
        logger.debug(f"Recorded {signal_type} for product {product_id} at retailer {retailer_id}")
        return True

    async def record_snapshot(self, record: AvailabilityRecord, retailer_id: int) -> None:
        """Append an availability snapshot for a checked product."""
        async with self.session_factory() as db:
            db.add(AvailabilitySnapshot(
                product_id=record.product_id,
                retailer_id=retailer_id,
                in_stock=record.in_stock,
                availability_status=record.availability_status.value,
                price=record.price,
                product_url=record.product_url or None,
                snapshot_time=to_naive_utc(record.last_updated),
            ))
            await db.commit()

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _find_outcome(
        self, db: AsyncSession, product_id: int, retailer_id: int, since: datetime
    ) -> Optional[DropOutcome]:
        query = (
            select(DropOutcome)
            .where(
                DropOutcome.product_id == product_id,
                DropOutcome.retailer_id == retailer_id,
                DropOutcome.drop_at >= since,
            )
            .order_by(DropOutcome.drop_at.desc())
            .limit(1)
            .with_for_update()
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def record_first_seen(self, product_id: int, retailer_id: int, at: datetime) -> DropOutcome:
        """
        Note that a product was first seen at ``at``.

        Finds the occurrence whose drop time falls inside the first-seen
        lookback and lowers its ``first_seen_at`` to ``at`` if earlier;
        otherwise starts a new occurrence at ``at``.
        """
        at = to_naive_utc(at)
        since = at - timedelta(hours=settings.first_seen_lookback_hours)
        async with self._outcome_locks.hold((product_id, retailer_id)):
            async with self.session_factory() as db:
                outcome = await self._find_outcome(db, product_id, retailer_id, since)
                if outcome is None:
                    outcome = DropOutcome(
                        product_id=product_id,
                        retailer_id=retailer_id,
                        drop_at=at,
                        first_seen_at=at,
                        success_flag=False,
                    )
                    db.add(outcome)
                else:
                    if outcome.first_seen_at is None or at < outcome.first_seen_at:
                        outcome.first_seen_at = at
                    if at < outcome.drop_at:
                        outcome.drop_at = at
                    if outcome.first_instock_at is not None:
                        outcome.buy_window_seconds = _buy_window(outcome.first_seen_at, outcome.first_instock_at)
                await db.commit()
                await db.refresh(outcome)
                return outcome

    async def record_first_in_stock(self, product_id: int, retailer_id: int, at: datetime) -> DropOutcome:
        """
        Note that a product was first purchasable at ``at``.

        Lowers ``first_instock_at`` to ``at`` if earlier and recomputes the
        buy window (first in stock minus first seen, floored at zero).
        """
        at = to_naive_utc(at)
        since = at - timedelta(hours=settings.first_instock_lookback_hours)
        async with self._outcome_locks.hold((product_id, retailer_id)):
            async with self.session_factory() as db:
                outcome = await self._find_outcome(db, product_id, retailer_id, since)
                if outcome is None:
                    outcome = DropOutcome(
                        product_id=product_id,
                        retailer_id=retailer_id,
                        drop_at=at,
                        first_instock_at=at,
                        buy_window_seconds=0,
                        success_flag=False,
                    )
                    db.add(outcome)
                else:
                    if outcome.first_instock_at is None or at < outcome.first_instock_at:
                        outcome.first_instock_at = at
                    outcome.buy_window_seconds = _buy_window(outcome.first_seen_at, outcome.first_instock_at)
                await db.commit()
                await db.refresh(outcome)
                return outcome


async def resolve_retailer_id(db: AsyncSession, slug: str) -> Optional[int]:
    """Row id of a retailer slug, or None if unknown."""
    result = await db.execute(select(Retailer.id).where(Retailer.slug == slug))
    return result.scalar_one_or_none()
