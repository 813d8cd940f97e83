"""Per-adapter politeness limiting.

Each adapter owns a minimum interval between outbound requests. The
last-request time lives in process memory (monotonic clock) or, when
``shared_politeness_enabled`` is set, in redis so several workers honour
the same floor.
"""

import asyncio
import logging
import time
from collections import defaultdict, deque
from typing import Optional

from dropwatch.ingest.errors import ErrorType, RetailerError
from dropwatch.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval limiter keyed by adapter id."""

    def __init__(self, shared_store=None):
        self.locks = KeyedLocks()
        self.last_request: dict[str, float] = {}
        self._shared_store = shared_store

    def set_shared_store(self, store) -> None:
        """Use a RedisCache for last-request times shared across processes."""
        self._shared_store = store

    @staticmethod
    def _key(adapter_id: str) -> str:
        return f"politeness:last:{adapter_id}"

    async def _shared_last(self, adapter_id: str) -> Optional[float]:
        try:
            raw = await self._shared_store.get(self._key(adapter_id))
        except Exception as e:
            logger.warning(f"Shared politeness store unavailable for {adapter_id}: {e}")
            return None
        return float(raw) if raw else None

    async def acquire(self, adapter_id: str, min_interval: float) -> float:
        """
        Wait until ``min_interval`` seconds have passed since the adapter's
        previous request, then mark a new request.

        Args:
            adapter_id: Adapter (retailer slug) to limit
            min_interval: Minimum seconds between requests

        Returns:
            Seconds spent waiting
        """
        async with self.locks.hold(adapter_id):
            if self._shared_store is not None:
                waited = await self._acquire_shared(adapter_id, min_interval)
            else:
                now = time.monotonic()
                last = self.last_request.get(adapter_id)
                waited = 0.0 if last is None else max(0.0, min_interval - (now - last))
                if waited > 0:
                    logger.debug(f"Politeness wait {waited:.2f}s for {adapter_id}")
                    await asyncio.sleep(waited)
                self.last_request[adapter_id] = time.monotonic()
            return waited

    async def _acquire_shared(self, adapter_id: str, min_interval: float) -> float:
        last = await self._shared_last(adapter_id)
        now = time.time()
        waited = 0.0 if last is None else max(0.0, min_interval - (now - last))
        if waited > 0:
            await asyncio.sleep(waited)
        ttl = max(1, int(min_interval * 2) + 1)
        try:
            await self._shared_store.set(self._key(adapter_id), f"{time.time():.3f}", ttl)
        except Exception as e:
            logger.warning(f"Could not store shared politeness time for {adapter_id}: {e}")
        self.last_request[adapter_id] = time.monotonic()
        return waited

    def reset(self, adapter_id: Optional[str] = None) -> None:
        """Forget last-request times (all adapters when ``adapter_id`` is None)."""
        if adapter_id is None:
            self.last_request.clear()
        else:
            self.last_request.pop(adapter_id, None)


class RequestWindow:
    """Rolling one-minute request budget per adapter."""

    def __init__(self, window_seconds: float = 60.0):
        self.window_seconds = window_seconds
        self._requests: dict[str, deque] = defaultdict(deque)
        self.hits: dict[str, int] = defaultdict(int)

    def check(self, adapter_id: str, requests_per_minute: int) -> None:
        """
        Count a request against the adapter's budget.

        Raises:
            RetailerError: RATE_LIMIT (retryable) when the budget is exhausted
        """
        now = time.monotonic()
        window = self._requests[adapter_id]
        while window and now - window[0] >= self.window_seconds:
            window.popleft()
        if len(window) >= requests_per_minute:
            self.hits[adapter_id] += 1
            raise RetailerError(
                "Rate limit exceeded", adapter_id, ErrorType.RATE_LIMIT, 429
            )
        window.append(now)


# Global rate limiter instance
rate_limiter = RateLimiter()
