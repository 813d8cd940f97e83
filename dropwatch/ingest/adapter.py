"""Shared behaviour of all retailer adapters.

``BaseRetailerAdapter`` wraps each public operation so that every call is
timed, bounded by a timeout and recorded in the health monitor before it
returns or raises. Concrete adapters implement the underscored hooks.
"""

import asyncio
import logging
import re
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional, TypeVar

from dropwatch import metrics
from dropwatch.config import settings
from dropwatch.ingest.base import (
    AdapterConfig,
    AdapterType,
    AvailabilityRecord,
    AvailabilityRequest,
    AvailabilityStatus,
    RetailerAdapter,
)
from dropwatch.ingest.errors import ErrorType, RetailerError, from_exception
from dropwatch.ingest.http_client import FetchResult, HttpAcquirer
from dropwatch.ingest.rate_limiter import RequestWindow
from dropwatch.ingest.store_health import AdapterHealthMonitor, adapter_health
from dropwatch.logging_config import get_logger

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PRICE_RE = re.compile(r"\$?\s*(\d[\d,]*\.?\d*)")


def parse_price(text: Optional[str]) -> Optional[Decimal]:
    """First dollar amount in ``text`` ("$29.99", "29.99", "$29.99 - $39.99")."""
    if not text:
        return None
    match = _PRICE_RE.search(text)
    if not match:
        return None
    try:
        return Decimal(match.group(1).replace(",", "").rstrip("."))
    except InvalidOperation:
        return None


def determine_availability_status(
    in_stock: bool,
    availability_text: str = "",
    stock_level: Optional[int] = None,
) -> AvailabilityStatus:
    """Map stock flags and retailer wording to a normalized status."""
    if not in_stock:
        return AvailabilityStatus.OUT_OF_STOCK

    text = (availability_text or "").lower()
    if "pre-order" in text or "preorder" in text:
        return AvailabilityStatus.PRE_ORDER
    if "limited" in text or "low stock" in text:
        return AvailabilityStatus.LOW_STOCK
    if "discontinued" in text:
        return AvailabilityStatus.DISCONTINUED
    if stock_level is not None and 0 < stock_level <= 5:
        return AvailabilityStatus.LOW_STOCK
    return AvailabilityStatus.IN_STOCK


class BaseRetailerAdapter(RetailerAdapter):
    """Adapter base with health recording, request budget and acquisition access."""

    def __init__(
        self,
        config: AdapterConfig,
        acquirer: HttpAcquirer,
        health: Optional[AdapterHealthMonitor] = None,
    ):
        self.config = config
        self.acquirer = acquirer
        self.health = health or adapter_health
        self.health.register(config.retailer_id, config.adapter_type)
        self._window = RequestWindow()
        self.log = get_logger(__name__, retailer=config.retailer_id)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def check_availability(self, request: AvailabilityRequest) -> AvailabilityRecord:
        return await self._call("check_availability", lambda: self._check_availability(request))

    async def search_products(self, query: str) -> list[AvailabilityRecord]:
        return await self._call("search_products", lambda: self._search_products(query))

    async def health_check(self) -> None:
        try:
            await self._call("health_check", self._probe)
        except RetailerError as e:
            self.health.record_health_check(self.retailer_id, self.adapter_type, error=str(e))
            raise
        self.health.record_health_check(self.retailer_id, self.adapter_type)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def _check_availability(self, request: AvailabilityRequest) -> AvailabilityRecord:
        raise NotImplementedError

    async def _search_products(self, query: str) -> list[AvailabilityRecord]:
        raise NotImplementedError

    async def _probe(self) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run one adapter operation, recording its outcome before returning or raising."""
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(func(), timeout=settings.adapter_call_timeout_seconds)
        except asyncio.CancelledError:
            self._record_failure(operation, time.monotonic() - start, f"{operation} cancelled")
            raise
        except Exception as e:
            error = from_exception(e, self.retailer_id, self.adapter_type == AdapterType.SCRAPING)
            self._record_failure(
                operation,
                time.monotonic() - start,
                str(error),
                rate_limited=error.error_type == ErrorType.RATE_LIMIT,
            )
            if error is e:
                raise
            raise error from e

        duration = time.monotonic() - start
        self.health.record_request(
            self.retailer_id, self.adapter_type, success=True, duration_ms=duration * 1000
        )
        metrics.record_adapter_call(self.retailer_id, operation, True, duration)
        return result

    def _record_failure(self, operation: str, duration: float, error: str, rate_limited: bool = False) -> None:
        self.health.record_request(
            self.retailer_id,
            self.adapter_type,
            success=False,
            duration_ms=duration * 1000,
            error=error,
            rate_limited=rate_limited,
        )
        metrics.record_adapter_call(self.retailer_id, operation, False, duration)
        self.log.warning(f"{operation} failed: {error}")

    async def make_request(self, url: str, **kwargs: Any) -> FetchResult:
        """Fetch through the acquisition layer, charged against the per-minute budget."""
        self._window.check(self.retailer_id, self.config.requests_per_minute)
        return await self.acquirer.fetch(url, self.config, **kwargs)

    def build_cart_url(self, product_url: str, sku: Optional[str] = None) -> Optional[str]:
        """Direct add-to-cart link, or the product page when the retailer has none."""
        return product_url or None

    def not_found(self, what: str) -> RetailerError:
        return RetailerError(f"{what} not found", self.retailer_id, ErrorType.NOT_FOUND, 404)

    def parsing_error(self, message: str) -> RetailerError:
        return RetailerError(message, self.retailer_id, ErrorType.PARSING)

    def build_record(
        self,
        product_id: int,
        in_stock: bool,
        availability_text: str = "",
        stock_level: Optional[int] = None,
        **fields: Any,
    ) -> AvailabilityRecord:
        return AvailabilityRecord(
            retailer_id=self.retailer_id,
            product_id=product_id,
            in_stock=in_stock,
            availability_status=determine_availability_status(in_stock, availability_text, stock_level),
            **fields,
        )
