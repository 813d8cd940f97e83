"""Adapter health tracking.

Records every adapter call's outcome and latency and classifies each adapter
as healthy or not. API adapters are held to a stricter bar than scraped
ones. The circuit state is informational and does not block calls.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from dropwatch import metrics
from dropwatch.config import settings
from dropwatch.ingest.base import AdapterType
from dropwatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"


@dataclass
class AdapterHealthState:
    """Health metrics for a single adapter."""
    retailer_id: str
    adapter_type: AdapterType
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rate_limit_hits: int = 0
    average_response_time_ms: float = 0.0
    last_error: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    circuit_state: CircuitState = CircuitState.CLOSED

    # Rolling window of recent latencies (last 100)
    recent_latencies: deque = field(default_factory=lambda: deque(maxlen=100))

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    @property
    def thresholds(self) -> tuple[float, float]:
        """(minimum success rate, maximum average latency in ms)."""
        if self.adapter_type == AdapterType.SCRAPING:
            return settings.scraping_min_success_rate, settings.scraping_max_avg_latency_ms
        return settings.api_min_success_rate, settings.api_max_avg_latency_ms

    @property
    def is_healthy(self) -> bool:
        min_rate, max_latency = self.thresholds
        return self.success_rate >= min_rate and self.average_response_time_ms <= max_latency

    def to_dict(self) -> Dict[str, Any]:
        return {
            "retailer_id": self.retailer_id,
            "adapter_type": self.adapter_type.value,
            "is_healthy": self.is_healthy,
            "success_rate": round(self.success_rate, 4),
            "average_response_time_ms": round(self.average_response_time_ms, 1),
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "rate_limit_hits": self.rate_limit_hits,
            "circuit_state": self.circuit_state.value,
            "last_error": self.last_error,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
        }


class AdapterHealthMonitor:
    """Tracks call outcomes per adapter."""

    def __init__(self):
        self._states: Dict[str, AdapterHealthState] = {}

    def register(self, retailer_id: str, adapter_type: AdapterType) -> AdapterHealthState:
        """Get or create the state for an adapter."""
        state = self._states.get(retailer_id)
        if state is None:
            state = AdapterHealthState(retailer_id=retailer_id, adapter_type=adapter_type)
            self._states[retailer_id] = state
        return state

    def get_state(self, retailer_id: str) -> Optional[AdapterHealthState]:
        return self._states.get(retailer_id)

    def record_request(
        self,
        retailer_id: str,
        adapter_type: AdapterType,
        success: bool,
        duration_ms: float,
        error: Optional[str] = None,
        rate_limited: bool = False,
    ) -> None:
        """
        Record one adapter call.

        Args:
            retailer_id: Adapter slug
            adapter_type: API or scraping, selects the health thresholds
            success: Whether the call returned normally
            duration_ms: Wall time of the call
            error: Error message for failed calls
            rate_limited: Whether the failure was a rate limit
        """
        state = self.register(retailer_id, adapter_type)
        state.total_requests += 1
        if success:
            state.successful_requests += 1
        else:
            state.failed_requests += 1
            state.last_error = error
        if rate_limited:
            state.rate_limit_hits += 1

        state.recent_latencies.append(duration_ms)
        state.average_response_time_ms = sum(state.recent_latencies) / len(state.recent_latencies)

        metrics.update_adapter_health(
            retailer_id,
            success_rate=state.success_rate,
            avg_latency_ms=state.average_response_time_ms,
            healthy=state.is_healthy,
        )

        if state.total_requests % 10 == 0:
            logger.info(
                f"Adapter {retailer_id}: {state.total_requests} requests, "
                f"success_rate={state.success_rate:.2%}, "
                f"avg_latency={state.average_response_time_ms:.0f}ms"
            )

    def record_health_check(self, retailer_id: str, adapter_type: AdapterType, error: Optional[str] = None) -> None:
        """Set the circuit state from a health probe result."""
        state = self.register(retailer_id, adapter_type)
        state.last_checked_at = utcnow()
        if error is None:
            state.circuit_state = CircuitState.CLOSED
        else:
            state.circuit_state = CircuitState.OPEN
            state.last_error = error
            logger.warning(f"Health check failed for {retailer_id}: {error}")

    def is_healthy(self, retailer_id: str) -> bool:
        """Unknown adapters are considered healthy."""
        state = self._states.get(retailer_id)
        return state.is_healthy if state else True

    def get_health_summary(self) -> Dict[str, Dict[str, Any]]:
        return {rid: state.to_dict() for rid, state in self._states.items()}

    def reset(self) -> None:
        self._states.clear()


# Global monitor instance
adapter_health = AdapterHealthMonitor()
