"""Tests for acquisition escalation."""

import asyncio

import httpx
import pytest

from conftest import FakeRenderer
from dropwatch.config import settings
from dropwatch.ingest.base import AdapterConfig, AdapterType
from dropwatch.ingest.errors import AcquisitionError, ErrorType, RetailerError
from dropwatch.ingest.http_client import FetchStep, HttpAcquirer
from dropwatch.ingest.proxy_manager import ProxyRotator
from dropwatch.ingest.rate_limiter import RateLimiter

SCRAPED = AdapterConfig(
    retailer_id="target",
    name="Target",
    adapter_type=AdapterType.SCRAPING,
    base_url="https://www.target.com",
    requests_per_minute=600,
)
API = AdapterConfig(
    retailer_id="best-buy",
    name="Best Buy",
    adapter_type=AdapterType.API,
    base_url="https://api.bestbuy.com/v1",
    requests_per_minute=600,
)


class StatusSequence:
    """MockTransport handler answering with a fixed sequence of statuses."""

    def __init__(self, *statuses: int):
        self.statuses = list(statuses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses[min(len(self.requests), len(self.statuses)) - 1]
        return httpx.Response(status, text=f"<html>{status}</html>")


def make_acquirer(handler, renderer=None):
    rotator = ProxyRotator(proxy_urls=[])
    acquirer = HttpAcquirer(
        limiter=RateLimiter(),
        rotator=rotator,
        renderer=renderer,
        transport=httpx.MockTransport(handler),
    )
    return acquirer, rotator


@pytest.mark.asyncio
async def test_scraping_403_rotates_once_then_renders():
    handler = StatusSequence(403, 403)
    renderer = FakeRenderer(html="<html>rendered</html>")
    acquirer, rotator = make_acquirer(handler, renderer)

    result = await acquirer.fetch("https://www.target.com/s?searchTerm=pokemon", SCRAPED)

    assert result.step == FetchStep.RENDERED
    assert result.body == "<html>rendered</html>"
    assert len(handler.requests) == 2  # direct + one rotated retry
    assert rotator.rotations == {"target": 1}
    assert renderer.calls == ["https://www.target.com/s?searchTerm=pokemon"]
    await acquirer.close()


@pytest.mark.asyncio
async def test_scraping_429_recovered_by_rotation():
    handler = StatusSequence(429, 200)
    renderer = FakeRenderer()
    acquirer, rotator = make_acquirer(handler, renderer)

    result = await acquirer.fetch("https://www.target.com/p/x/-/A-1", SCRAPED)

    assert result.step == FetchStep.ROTATED
    assert rotator.rotations == {"target": 1}
    assert renderer.calls == []
    await acquirer.close()


@pytest.mark.asyncio
async def test_api_403_does_not_escalate():
    handler = StatusSequence(403)
    renderer = FakeRenderer()
    acquirer, rotator = make_acquirer(handler, renderer)

    with pytest.raises(RetailerError) as exc_info:
        await acquirer.fetch("https://api.bestbuy.com/v1/products/1.json", API)

    assert exc_info.value.error_type == ErrorType.AUTH
    assert exc_info.value.retryable is False
    assert len(handler.requests) == 1
    assert rotator.rotations == {}
    assert renderer.calls == []
    await acquirer.close()


@pytest.mark.asyncio
async def test_api_429_is_retryable_rate_limit():
    acquirer, rotator = make_acquirer(StatusSequence(429))

    with pytest.raises(RetailerError) as exc_info:
        await acquirer.fetch("https://api.bestbuy.com/v1/products/1.json", API)

    assert exc_info.value.error_type == ErrorType.RATE_LIMIT
    assert exc_info.value.retryable is True
    assert rotator.rotations == {}
    await acquirer.close()


@pytest.mark.asyncio
async def test_network_failure_is_retryable_and_not_escalated():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    renderer = FakeRenderer()
    acquirer, rotator = make_acquirer(handler, renderer)

    with pytest.raises(RetailerError) as exc_info:
        await acquirer.fetch("https://www.target.com/s?searchTerm=pokemon", SCRAPED)

    assert exc_info.value.error_type == ErrorType.NETWORK
    assert exc_info.value.retryable is True
    assert rotator.rotations == {}
    assert renderer.calls == []
    await acquirer.close()


@pytest.mark.asyncio
async def test_exhausted_escalation_without_renderer():
    acquirer, rotator = make_acquirer(StatusSequence(403, 403))

    with pytest.raises(AcquisitionError) as exc_info:
        await acquirer.fetch("https://www.target.com/s?searchTerm=pokemon", SCRAPED)

    assert exc_info.value.step == FetchStep.ROTATED.value
    assert rotator.rotations == {"target": 1}
    await acquirer.close()


@pytest.mark.asyncio
async def test_render_failure_surfaces_error():
    renderer = FakeRenderer(status_code=403)
    acquirer, _ = make_acquirer(StatusSequence(403, 403), renderer)

    with pytest.raises(AcquisitionError) as exc_info:
        await acquirer.fetch("https://www.target.com/s?searchTerm=pokemon", SCRAPED)

    assert exc_info.value.step == FetchStep.RENDERED.value
    assert exc_info.value.error_type == ErrorType.AUTH
    await acquirer.close()


@pytest.mark.asyncio
async def test_fetch_records_last_request_time():
    acquirer, _ = make_acquirer(StatusSequence(200))
    await acquirer.fetch("https://api.bestbuy.com/v1/products.json", API)
    assert "best-buy" in acquirer.last_request_at
    await acquirer.close()


def test_politeness_interval_has_scraping_floor():
    # 60 / 600 rpm = 0.1s, raised to the 2s floor for scraped sites
    assert HttpAcquirer.politeness_interval(API) == pytest.approx(0.1)
    assert HttpAcquirer.politeness_interval(SCRAPED) == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_rotation_keeps_old_client_open_for_in_flight_requests(monkeypatch):
    monkeypatch.setattr(settings, "scraping_min_interval_seconds", 0.0)
    monkeypatch.setattr(settings, "retired_client_grace_seconds", 0.1)
    acquirer, _ = make_acquirer(StatusSequence(200, 403, 200))

    await acquirer.fetch("https://www.target.com/p/a/-/A-1", SCRAPED)
    old = acquirer._clients["target"]

    result = await acquirer.fetch("https://www.target.com/p/b/-/A-2", SCRAPED)

    assert result.step == FetchStep.ROTATED
    assert acquirer._clients["target"] is not old
    assert not old.is_closed
    await asyncio.sleep(0.3)
    assert old.is_closed
    await acquirer.close()


@pytest.mark.asyncio
async def test_close_releases_retired_clients(monkeypatch):
    monkeypatch.setattr(settings, "scraping_min_interval_seconds", 0.0)
    acquirer, _ = make_acquirer(StatusSequence(200, 429, 200))

    await acquirer.fetch("https://www.target.com/p/a/-/A-1", SCRAPED)
    old = acquirer._clients["target"]
    await acquirer.fetch("https://www.target.com/p/b/-/A-2", SCRAPED)
    current = acquirer._clients["target"]

    await acquirer.close()

    assert old.is_closed
    assert current.is_closed


def test_call_timeout_covers_escalation_chain():
    adapter_timeout = max(
        raw.get("timeout", settings.direct_timeout_seconds) for raw in settings.retailer_configs.values()
    )
    politeness = max(
        settings.base_request_interval_seconds / raw["requests_per_minute"]
        for raw in settings.retailer_configs.values()
    )
    # direct, rotated through the unlocker, then rendered
    per_fetch = adapter_timeout + adapter_timeout * 2 + settings.render_timeout_seconds + 5
    assert settings.adapter_call_timeout_seconds >= 2 * (per_fetch + politeness)
