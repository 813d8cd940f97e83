"""Tests for adapter health classification."""

from dropwatch.ingest.base import AdapterType
from dropwatch.ingest.store_health import AdapterHealthMonitor, CircuitState


def record(monitor, retailer, adapter_type, successes, failures, latency_ms=100.0):
    for _ in range(successes):
        monitor.record_request(retailer, adapter_type, success=True, duration_ms=latency_ms)
    for _ in range(failures):
        monitor.record_request(retailer, adapter_type, success=False, duration_ms=latency_ms, error="boom")


def test_api_adapter_needs_ninety_percent():
    monitor = AdapterHealthMonitor()
    record(monitor, "best-buy", AdapterType.API, 9, 1)
    assert monitor.is_healthy("best-buy")

    record(monitor, "best-buy", AdapterType.API, 0, 1)
    assert not monitor.is_healthy("best-buy")


def test_scraping_adapter_tolerates_eighty_percent():
    monitor = AdapterHealthMonitor()
    record(monitor, "target", AdapterType.SCRAPING, 8, 2)
    assert monitor.is_healthy("target")

    record(monitor, "target", AdapterType.SCRAPING, 0, 1)
    assert not monitor.is_healthy("target")


def test_latency_thresholds_differ_by_type():
    monitor = AdapterHealthMonitor()
    record(monitor, "walmart", AdapterType.API, 5, 0, latency_ms=6000)
    record(monitor, "costco", AdapterType.SCRAPING, 5, 0, latency_ms=6000)
    assert not monitor.is_healthy("walmart")
    assert monitor.is_healthy("costco")


def test_rate_limit_hits_and_summary():
    monitor = AdapterHealthMonitor()
    monitor.record_request("walmart", AdapterType.API, success=False, duration_ms=50, error="429", rate_limited=True)
    summary = monitor.get_health_summary()["walmart"]
    assert summary["rate_limit_hits"] == 1
    assert summary["failed_requests"] == 1
    assert summary["last_error"] == "429"


def test_health_check_sets_circuit_state():
    monitor = AdapterHealthMonitor()
    monitor.record_health_check("target", AdapterType.SCRAPING, error="403")
    assert monitor.get_state("target").circuit_state == CircuitState.OPEN
    monitor.record_health_check("target", AdapterType.SCRAPING)
    assert monitor.get_state("target").circuit_state == CircuitState.CLOSED


def test_unknown_adapter_is_healthy():
    assert AdapterHealthMonitor().is_healthy("nowhere")
