"""Canonical availability model and the retailer adapter interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from dropwatch.utils.timeutil import utcnow


class AvailabilityStatus(str, Enum):
    """Normalized availability states."""
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    PRE_ORDER = "pre_order"
    DISCONTINUED = "discontinued"


class AdapterType(str, Enum):
    """How an adapter talks to its retailer."""
    API = "api"
    SCRAPING = "scraping"


@dataclass(frozen=True)
class AvailabilityRequest:
    """What to look up. Identifiers the retailer does not use are ignored."""

    product_id: int
    sku: Optional[str] = None
    upc: Optional[str] = None
    product_url: Optional[str] = None
    zip_code: Optional[str] = None
    radius_miles: int = 25
    query: Optional[str] = None  # Free-text name used by search-driven adapters


@dataclass
class StoreLocation:
    """Availability at one physical store."""

    store_id: str
    name: str
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    distance_miles: Optional[float] = None
    in_stock: bool = False
    quantity: Optional[int] = None


@dataclass
class AvailabilityRecord:
    """Normalized availability of one product at one retailer."""

    retailer_id: str
    product_id: int
    in_stock: bool
    availability_status: AvailabilityStatus
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    product_url: str = ""
    cart_url: Optional[str] = None
    store_locations: list[StoreLocation] = field(default_factory=list)
    last_updated: datetime = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.last_updated is None:
            self.last_updated = utcnow()
        self.availability_status = AvailabilityStatus(self.availability_status)
        if not self.in_stock:
            self.availability_status = AvailabilityStatus.OUT_OF_STOCK
        for name in ("price", "original_price"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass
class AdapterConfig:
    """Static configuration of one retailer adapter."""

    retailer_id: str
    name: str
    adapter_type: AdapterType
    base_url: str
    requests_per_minute: int = 30
    timeout: float = 10.0
    api_key: Optional[str] = None

    @property
    def min_request_interval(self) -> float:
        """Seconds between requests derived from the per-minute budget."""
        from dropwatch.config import settings

        return settings.base_request_interval_seconds / max(1, self.requests_per_minute)


class RetailerAdapter(ABC):
    """Abstract base class for retailer adapters."""

    config: AdapterConfig

    @property
    def retailer_id(self) -> str:
        return self.config.retailer_id

    @property
    def adapter_type(self) -> AdapterType:
        return self.config.adapter_type

    @abstractmethod
    async def check_availability(self, request: AvailabilityRequest) -> AvailabilityRecord:
        """
        Look up current availability of one product.

        Args:
            request: Identifiers of the product to check

        Returns:
            AvailabilityRecord for the product

        Raises:
            RetailerError: If the lookup fails
        """
        pass

    @abstractmethod
    async def search_products(self, query: str) -> list[AvailabilityRecord]:
        """Search the retailer and return category-filtered records."""
        pass

    @abstractmethod
    async def health_check(self) -> None:
        """Probe the retailer. Raises RetailerError when it is unreachable."""
        pass
