"""Tests for the availability scan."""

import asyncio

import pytest
import pytest_asyncio

from dropwatch.config import settings
from dropwatch.db.models import RetailerProduct
from dropwatch.ingest.adapter import BaseRetailerAdapter
from dropwatch.ingest.base import AvailabilityRecord, AvailabilityStatus
from dropwatch.ingest.errors import ErrorType, RetailerError
from dropwatch.ingest.registry import AdapterRegistry
from dropwatch.ingest.store_health import AdapterHealthMonitor
from dropwatch.signals.channel import SignalChannel
from dropwatch.worker.tasks import TaskRunner


class FakeAdapter:
    def __init__(self, slug, in_stock=True, error=None):
        self.slug = slug
        self.in_stock = in_stock
        self.error = error
        self.requests = []

    async def check_availability(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return AvailabilityRecord(
            retailer_id=self.slug,
            product_id=request.product_id,
            in_stock=self.in_stock,
            availability_status=AvailabilityStatus.IN_STOCK,
            product_url=f"https://example.com/{self.slug}/{request.product_id}",
        )


class FakeHotWindows:
    def __init__(self, hot=()):
        self.hot = set(hot)

    async def has_active_hot_window(self):
        return bool(self.hot)

    async def is_hot(self, product_id, slug):
        return (product_id, slug) in self.hot


@pytest_asyncio.fixture
async def linked(seeded):
    async with seeded() as db:
        db.add_all([
            RetailerProduct(product_id=1, retailer_id=1, sku="6565432"),
            RetailerProduct(product_id=2, retailer_id=2, sku="5000123"),
            RetailerProduct(product_id=3, retailer_id=3, sku="91619929"),
            RetailerProduct(product_id=4, retailer_id=1, sku="1", is_active=False),
        ])
        await db.commit()
    return seeded


def drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.mark.asyncio
async def test_load_targets_skips_inactive(linked):
    targets = await TaskRunner(linked, SignalChannel(), FakeHotWindows()).load_targets()
    assert [(t.product_id, t.retailer_slug) for t in targets] == [(1, "best-buy"), (2, "walmart")]
    assert targets[0].sku == "6565432"
    assert targets[0].name == "Pokemon TCG Product 1"


@pytest.mark.asyncio
async def test_scan_publishes_observations(linked, monkeypatch):
    adapters = {
        "best-buy": FakeAdapter("best-buy"),
        "walmart": FakeAdapter("walmart", error=RetailerError("gone", "walmart", ErrorType.NOT_FOUND, 404)),
    }
    monkeypatch.setattr(AdapterRegistry, "get_adapter", lambda slug: adapters[slug])
    channel = SignalChannel()
    queue = channel.subscribe()

    summary = await TaskRunner(linked, channel, FakeHotWindows()).scan_availability()

    assert (summary.checked, summary.in_stock, len(summary.errors)) == (1, 1, 1)
    observations = {o.retailer_slug: o for o in drain(queue)}
    assert observations["best-buy"].record.in_stock is True
    assert observations["best-buy"].retailer_id == 1
    assert observations["walmart"].record is None
    assert observations["walmart"].error_type == ErrorType.NOT_FOUND


@pytest.mark.asyncio
async def test_active_hot_window_limits_scan(linked, monkeypatch):
    adapters = {"best-buy": FakeAdapter("best-buy"), "walmart": FakeAdapter("walmart", in_stock=False)}
    monkeypatch.setattr(AdapterRegistry, "get_adapter", lambda slug: adapters[slug])

    runner = TaskRunner(linked, SignalChannel(), FakeHotWindows(hot={(2, "walmart")}))
    summary = await runner.scan_availability()

    assert summary.checked == 1
    assert summary.in_stock == 0
    assert adapters["best-buy"].requests == []
    assert len(adapters["walmart"].requests) == 1


@pytest.mark.asyncio
async def test_unexpected_worker_error_does_not_stop_scan(linked, monkeypatch):
    adapters = {"best-buy": FakeAdapter("best-buy", error=ValueError("bad config")), "walmart": FakeAdapter("walmart")}
    monkeypatch.setattr(AdapterRegistry, "get_adapter", lambda slug: adapters[slug])

    summary = await TaskRunner(linked, SignalChannel(), FakeHotWindows()).scan_availability()

    assert summary.checked == 1
    assert len(summary.errors) == 1
    assert "bad config" in summary.errors[0]


class SlowAdapter(BaseRetailerAdapter):
    async def _check_availability(self, request):
        await asyncio.sleep(5)


@pytest.mark.asyncio
async def test_timed_out_check_is_recorded_in_health(linked, monkeypatch):
    monkeypatch.setattr(settings, "adapter_call_timeout_seconds", 0.2)
    health = AdapterHealthMonitor()
    slow = SlowAdapter(AdapterRegistry.build_config("best-buy"), acquirer=None, health=health)
    adapters = {"best-buy": slow, "walmart": FakeAdapter("walmart")}
    monkeypatch.setattr(AdapterRegistry, "get_adapter", lambda slug: adapters[slug])
    channel = SignalChannel()
    queue = channel.subscribe()

    summary = await TaskRunner(linked, channel, FakeHotWindows()).scan_availability()

    assert summary.checked == 1
    assert len(summary.errors) == 1
    state = health.get_state("best-buy")
    assert (state.total_requests, state.failed_requests) == (1, 1)
    observations = {o.retailer_slug: o for o in drain(queue)}
    assert observations["best-buy"].error_type == ErrorType.NETWORK
