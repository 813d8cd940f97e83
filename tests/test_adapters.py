"""Tests for retailer adapters and the registry."""

import asyncio
from decimal import Decimal

import httpx
import pytest

from conftest import FakeRenderer
from dropwatch.ingest.adapter import BaseRetailerAdapter
from dropwatch.ingest.base import AdapterType, AvailabilityRecord, AvailabilityRequest, AvailabilityStatus
from dropwatch.ingest.errors import ErrorType, RetailerError
from dropwatch.ingest.http_client import HttpAcquirer
from dropwatch.ingest.proxy_manager import ProxyRotator
from dropwatch.ingest.rate_limiter import RateLimiter
from dropwatch.ingest.registry import AdapterRegistry
from dropwatch.ingest.retailers.bestbuy import BestBuyAdapter
from dropwatch.ingest.retailers.target import TargetAdapter
from dropwatch.ingest.store_health import AdapterHealthMonitor

ETB = {
    "sku": 6565432,
    "name": "Pokemon TCG: Scarlet & Violet Prismatic Evolutions Elite Trainer Box",
    "regularPrice": 49.99,
    "salePrice": 44.99,
    "onSale": True,
    "onlineAvailability": False,
    "inStoreAvailability": False,
    "url": "https://www.bestbuy.com/site/6565432.p",
    "addToCartUrl": "https://api.bestbuy.com/click/-/6565432/cart",
}
PLUSH = {
    "sku": 6500001,
    "name": "Pokemon Pikachu Plush 8 inch",
    "regularPrice": 19.99,
    "salePrice": 19.99,
    "onlineAvailability": True,
    "url": "https://www.bestbuy.com/site/6500001.p",
}

TARGET_SEARCH = """
<html><body><ul>
  <li data-test="list-entry-product-card">
    <a data-test="product-title" href="/p/pokemon-trading-card-game-surging-sparks-booster-bundle/-/A-91619929">
      Pokemon Trading Card Game: Surging Sparks Booster Bundle</a>
    <span data-test="current-price">$26.99</span>
    <div data-test="fulfillment-cell-shipping">Arrives Fri, Oct 4</div>
  </li>
  <li data-test="list-entry-product-card">
    <a data-test="product-title" href="/p/pokemon-squishmallow-plush/-/A-88000001">Pokemon Squishmallow Plush</a>
    <span data-test="current-price">$14.99</span>
  </li>
</ul></body></html>
"""


def acquirer_for(handler=None, renderer=None):
    handler = handler or (lambda request: httpx.Response(200, text="<html></html>"))
    return HttpAcquirer(
        limiter=RateLimiter(),
        rotator=ProxyRotator(proxy_urls=[]),
        renderer=renderer,
        transport=httpx.MockTransport(handler),
    )


def bestbuy_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/v1/products/6565432.json":
        return httpx.Response(200, json=ETB)
    if path.startswith("/v1/products(search="):
        return httpx.Response(200, json={"products": [ETB, PLUSH]})
    return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def health():
    return AdapterHealthMonitor()


@pytest.fixture
def bestbuy(health):
    config = AdapterRegistry.build_config("best-buy")
    config.requests_per_minute = 6000
    config.api_key = "test-key"
    return BestBuyAdapter(config, acquirer_for(bestbuy_handler), health)


@pytest.mark.asyncio
async def test_bestbuy_maps_product_json(bestbuy, health):
    record = await bestbuy.check_availability(AvailabilityRequest(product_id=7, sku="6565432"))

    assert record.retailer_id == "best-buy"
    assert record.product_id == 7
    assert record.in_stock is False
    assert record.availability_status == AvailabilityStatus.OUT_OF_STOCK
    assert record.price == Decimal("44.99")
    assert record.original_price == Decimal("49.99")
    assert record.product_url == ETB["url"]
    assert record.metadata["sku"] == 6565432

    state = health.get_state("best-buy")
    assert (state.total_requests, state.successful_requests) == (1, 1)


@pytest.mark.asyncio
async def test_bestbuy_unknown_sku_is_not_found(bestbuy, health):
    with pytest.raises(RetailerError) as exc:
        await bestbuy.check_availability(AvailabilityRequest(product_id=7, sku="999"))

    assert exc.value.error_type == ErrorType.NOT_FOUND
    assert exc.value.retryable is False
    assert health.get_state("best-buy").failed_requests == 1


@pytest.mark.asyncio
async def test_bestbuy_search_filters_out_of_category(bestbuy):
    records = await bestbuy.search_products("pokemon elite trainer box")
    assert [r.metadata["sku"] for r in records] == [6565432]


@pytest.mark.asyncio
async def test_target_search_is_rendered_and_filtered(health):
    renderer = FakeRenderer(html=TARGET_SEARCH)
    config = AdapterRegistry.build_config("target")
    config.requests_per_minute = 6000
    adapter = TargetAdapter(config, acquirer_for(renderer=renderer), health)

    records = await adapter.search_products("pokemon tcg")

    assert len(renderer.calls) == 1
    assert len(records) == 1
    record = records[0]
    assert record.product_url.startswith("https://www.target.com/p/")
    assert record.metadata["sku"] == "91619929"
    assert record.price == Decimal("26.99")
    # A parsed delivery date counts as purchasable even without stock text
    assert record.in_stock is True
    assert record.metadata["shipDate"] is not None


@pytest.mark.asyncio
async def test_target_check_availability_matches_by_sku(health):
    renderer = FakeRenderer(html=TARGET_SEARCH)
    config = AdapterRegistry.build_config("target")
    config.requests_per_minute = 6000
    adapter = TargetAdapter(config, acquirer_for(renderer=renderer), health)

    record = await adapter.check_availability(
        AvailabilityRequest(product_id=3, sku="91619929", query="surging sparks booster bundle")
    )

    assert record.product_id == 3
    assert record.in_stock is True
    assert len(renderer.calls) == 1  # shipping text on the card, no product page fetch


@pytest.mark.asyncio
async def test_target_empty_results_is_not_found(health):
    config = AdapterRegistry.build_config("target")
    config.requests_per_minute = 6000
    adapter = TargetAdapter(config, acquirer_for(renderer=FakeRenderer()), health)

    with pytest.raises(RetailerError) as exc:
        await adapter.check_availability(AvailabilityRequest(product_id=3, query="nothing"))
    assert exc.value.error_type == ErrorType.NOT_FOUND


def test_registry_knows_supported_retailers():
    assert AdapterRegistry.is_supported("walmart")
    assert not AdapterRegistry.is_supported("acme")
    assert set(AdapterRegistry.list_retailers()) >= {"best-buy", "walmart", "target", "costco", "sams-club"}
    with pytest.raises(ValueError):
        AdapterRegistry.get_adapter("acme")


def test_registry_config_types():
    assert AdapterRegistry.build_config("best-buy").adapter_type == AdapterType.API
    assert AdapterRegistry.build_config("target").adapter_type == AdapterType.SCRAPING


def test_record_rejects_negative_prices():
    with pytest.raises(ValueError):
        AvailabilityRecord("walmart", 1, True, AvailabilityStatus.IN_STOCK, price=Decimal("-0.01"))
    with pytest.raises(ValueError):
        AvailabilityRecord(
            "walmart", 1, True, AvailabilityStatus.IN_STOCK,
            price=Decimal("10"), original_price=Decimal("-5"),
        )


def test_record_out_of_stock_overrides_status():
    record = AvailabilityRecord("walmart", 1, False, AvailabilityStatus.IN_STOCK, price=Decimal("0"))
    assert record.availability_status == AvailabilityStatus.OUT_OF_STOCK
    assert record.last_updated is not None

    preorder = AvailabilityRecord("walmart", 1, True, "pre_order")
    assert preorder.availability_status == AvailabilityStatus.PRE_ORDER


class BlockingAdapter(BaseRetailerAdapter):
    async def _check_availability(self, request):
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_cancelled_call_is_recorded_as_failure(health):
    adapter = BlockingAdapter(AdapterRegistry.build_config("walmart"), acquirer_for(), health)

    task = asyncio.create_task(adapter.check_availability(AvailabilityRequest(product_id=1)))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    state = health.get_state("walmart")
    assert (state.total_requests, state.failed_requests) == (1, 1)
    assert "cancelled" in state.last_error
