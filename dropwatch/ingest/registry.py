"""Adapter registry keyed by retailer slug."""

import logging
from typing import Optional, Type

from dropwatch.config import settings
from dropwatch.ingest.adapter import BaseRetailerAdapter
from dropwatch.ingest.base import AdapterConfig, AdapterType
from dropwatch.ingest.fetchers.headless import get_renderer
from dropwatch.ingest.http_client import HttpAcquirer
from dropwatch.ingest.retailers.bestbuy import BestBuyAdapter
from dropwatch.ingest.retailers.costco import CostcoAdapter
from dropwatch.ingest.retailers.gamestop import GameStopAdapter
from dropwatch.ingest.retailers.samsclub import SamsClubAdapter
from dropwatch.ingest.retailers.target import TargetAdapter
from dropwatch.ingest.retailers.walmart import WalmartAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry for retailer adapters."""

    _adapters: dict[str, Type[BaseRetailerAdapter]] = {
        "best-buy": BestBuyAdapter,
        "walmart": WalmartAdapter,
        "target": TargetAdapter,
        "costco": CostcoAdapter,
        "gamestop": GameStopAdapter,
        "sams-club": SamsClubAdapter,
    }

    _instances: dict[str, BaseRetailerAdapter] = {}
    _acquirer: Optional[HttpAcquirer] = None

    @classmethod
    def get_acquirer(cls) -> HttpAcquirer:
        if cls._acquirer is None:
            cls._acquirer = HttpAcquirer(renderer=get_renderer())
        return cls._acquirer

    @classmethod
    def set_acquirer(cls, acquirer: HttpAcquirer) -> None:
        """Replace the shared acquirer (drops cached adapters)."""
        cls._acquirer = acquirer
        cls._instances.clear()

    @staticmethod
    def build_config(slug: str) -> AdapterConfig:
        """AdapterConfig for a slug from settings.retailer_configs."""
        raw = settings.retailer_configs.get(slug)
        if raw is None:
            raise ValueError(f"No configuration for retailer: {slug}")
        api_keys = {"best-buy": settings.bestbuy_api_key, "walmart": settings.walmart_api_key}
        return AdapterConfig(
            retailer_id=slug,
            name=raw.get("name", slug),
            adapter_type=AdapterType(raw.get("type", "scraping")),
            base_url=raw["base_url"],
            requests_per_minute=int(raw.get("requests_per_minute", 30)),
            timeout=float(raw.get("timeout", settings.direct_timeout_seconds)),
            api_key=raw.get("api_key") or api_keys.get(slug) or None,
        )

    @classmethod
    def get_adapter(cls, slug: str) -> BaseRetailerAdapter:
        """
        Get or create the adapter for a retailer.

        Raises:
            ValueError: If the retailer is not registered
        """
        if slug not in cls._adapters:
            raise ValueError(f"Unknown retailer: {slug}. Available: {list(cls._adapters.keys())}")

        if slug not in cls._instances:
            adapter_class = cls._adapters[slug]
            cls._instances[slug] = adapter_class(cls.build_config(slug), cls.get_acquirer())
            logger.info(f"Initialized adapter for retailer: {slug}")
        return cls._instances[slug]

    @classmethod
    def register_adapter(cls, slug: str, adapter_class: Type[BaseRetailerAdapter]) -> None:
        cls._adapters[slug] = adapter_class
        cls._instances.pop(slug, None)
        logger.info(f"Registered adapter for retailer: {slug}")

    @classmethod
    def list_retailers(cls) -> list[str]:
        return list(cls._adapters.keys())

    @classmethod
    def is_supported(cls, slug: str) -> bool:
        return slug in cls._adapters

    @classmethod
    async def close(cls) -> None:
        if cls._acquirer is not None:
            await cls._acquirer.close()
            if cls._acquirer.renderer is not None:
                await cls._acquirer.renderer.close()
        cls._instances.clear()
