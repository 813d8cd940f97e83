"""Typed message channel from availability checks to signal consumers.

Scan workers publish an ``Observation`` after every adapter call. Each
subscriber owns its own queue, so consumers run independently and a slow
one never blocks the producers or the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dropwatch.ingest.base import AvailabilityRecord, AvailabilityStatus
from dropwatch.ingest.errors import ErrorType
from dropwatch.signals.store import SignalStore
from dropwatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """Result of one availability check for a (product, retailer) pair."""
    product_id: int
    retailer_id: int  # retailers.id
    retailer_slug: str
    observed_at: datetime
    record: Optional[AvailabilityRecord] = None
    error_type: Optional[ErrorType] = None


class SignalChannel:
    """Fan-out channel of Observations."""

    def __init__(self, maxsize: int = 1000):
        self._maxsize = maxsize
        self._subscribers: list[asyncio.Queue] = []

    def subscribe(self) -> "asyncio.Queue[Optional[Observation]]":
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def publish(self, observation: Observation) -> None:
        for queue in self._subscribers:
            await queue.put(observation)

    async def close(self) -> None:
        """Tell every subscriber to stop."""
        for queue in self._subscribers:
            await queue.put(None)


@dataclass
class _PairState:
    live: bool
    in_stock: bool
    status: Optional[AvailabilityStatus]


class SignalRecorder:
    """
    Turns observations into signal events and drop outcomes.

    * url_seen: the pair became visible (first observation, or after a not-found)
    * url_live: the product page answered
    * price_present: a price was shown
    * in_stock: the pair flipped to purchasable
    * status_change: the normalized status changed

    url_seen starts or refreshes a drop occurrence through
    ``record_first_seen``; an in_stock flip calls ``record_first_in_stock``.
    Snapshots are written for every successful observation.
    """

    def __init__(self, store: SignalStore, source: str = "availability_scan"):
        self.store = store
        self.source = source
        self._state: dict[tuple[int, int], _PairState] = {}

    async def handle(self, observation: Observation) -> list[str]:
        """Process one observation and return the signal types appended."""
        key = (observation.product_id, observation.retailer_id)
        previous = self._state.get(key)
        at = observation.observed_at
        emitted: list[str] = []

        record = observation.record
        if record is None:
            if observation.error_type == ErrorType.NOT_FOUND:
                self._state[key] = _PairState(live=False, in_stock=False, status=None)
            return emitted

        await self.store.record_snapshot(record, observation.retailer_id)

        async def emit(signal_type: str, value: Optional[str], dedupe: bool = True):
            appended = await self.store.record_signal(
                observation.product_id,
                observation.retailer_id,
                signal_type,
                observed_at=at,
                value=value,
                source=self.source,
                dedupe=dedupe,
            )
            if appended:
                emitted.append(signal_type)

        url = record.product_url or None
        if previous is None or not previous.live:
            await emit("url_seen", url)
            await self.store.record_first_seen(observation.product_id, observation.retailer_id, at)

        await emit("url_live", url)

        if record.price is not None:
            await emit("price_present", str(record.price))

        if record.in_stock and (previous is None or not previous.in_stock):
            await emit("in_stock", record.availability_status.value, dedupe=False)
            await self.store.record_first_in_stock(observation.product_id, observation.retailer_id, at)

        if previous is not None and previous.status is not None and previous.status != record.availability_status:
            await emit("status_change", f"{previous.status.value}->{record.availability_status.value}", dedupe=False)

        self._state[key] = _PairState(live=True, in_stock=record.in_stock, status=record.availability_status)
        return emitted

    async def run(self, queue: asyncio.Queue) -> None:
        """Consume a subscription until a None sentinel arrives."""
        while True:
            observation = await queue.get()
            try:
                if observation is None:
                    return
                await self.handle(observation)
            except Exception as e:
                logger.error(
                    f"Failed to record signals for product {observation.product_id} "
                    f"at {observation.retailer_slug}: {e}",
                    exc_info=True,
                )
            finally:
                queue.task_done()


def observation_from_record(record: AvailabilityRecord, retailer_id: int) -> Observation:
    return Observation(
        product_id=record.product_id,
        retailer_id=retailer_id,
        retailer_slug=record.retailer_id,
        observed_at=record.last_updated or utcnow(),
        record=record,
    )


# Global channel instance
signal_channel = SignalChannel()
