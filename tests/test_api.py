"""API tests that need neither the database nor redis."""

import pytest
from fastapi.testclient import TestClient

from dropwatch.api.deps import get_adapter
from dropwatch.ingest.errors import ErrorType, RetailerError
from dropwatch.main import app
from dropwatch.predict.engine import TAG_DEFAULTS


class RateLimitedAdapter:
    async def search_products(self, query):
        raise RetailerError("Too many requests", "walmart", ErrorType.RATE_LIMIT, 429)


@pytest.fixture
def client():
    # No context manager: the lifespan (database, scheduler) is not started
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_predictions_use_retailer_defaults(client):
    response = client.get("/api/predictions", params={"retailer": "costco", "horizon_minutes": 1440})

    assert response.status_code == 200
    windows = response.json()
    assert len(windows) == 1
    assert windows[0]["retailer_id"] == "costco"
    assert windows[0]["confidence"] == 50
    assert windows[0]["rationale"] == [TAG_DEFAULTS]


def test_predictions_reject_non_positive_horizon(client):
    response = client.get("/api/predictions", params={"retailer": "costco", "horizon_minutes": 0})
    assert response.status_code == 422


def test_retailer_health_summary(client):
    response = client.get("/api/retailers/health")
    assert response.status_code == 200
    assert isinstance(response.json()["adapters"], dict)


def test_unknown_retailer_search_is_404(client):
    response = client.get("/api/retailers/acme/search", params={"q": "pokemon"})
    assert response.status_code == 404


def test_retailer_errors_map_to_status(client):
    app.dependency_overrides[get_adapter] = lambda slug: RateLimitedAdapter()

    response = client.get("/api/retailers/walmart/search", params={"q": "pokemon"})

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["error_type"] == "RATE_LIMIT"
    assert detail["retryable"] is True
