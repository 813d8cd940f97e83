"""Best Buy adapter using the public Products API."""

import logging
from decimal import Decimal
from typing import Any, Optional

from dropwatch.ingest.base import AvailabilityRecord, AvailabilityRequest, StoreLocation
from dropwatch.ingest.errors import ErrorType, RetailerError
from dropwatch.ingest.fetchers.api import ApiRetailerAdapter
from dropwatch.ingest.filters import is_in_category

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = (
    "sku,name,regularPrice,salePrice,onSale,url,addToCartUrl,"
    "inStoreAvailability,onlineAvailability,image,categoryPath"
)
STORE_FIELDS = (
    "storeId,storeName,address,city,region,postalCode,phone,distance,"
    "lowStock,inStoreAvailability"
)


def _money(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


class BestBuyAdapter(ApiRetailerAdapter):
    """Maps Best Buy product JSON into availability records."""

    async def _get_by_sku(self, sku: str) -> Optional[dict]:
        try:
            data = await self.get_json(f"products/{sku}.json", {"format": "json", "show": PRODUCT_FIELDS})
        except RetailerError as e:
            if e.error_type == ErrorType.NOT_FOUND:
                return None
            raise
        return data or None

    async def _get_by_upc(self, upc: str) -> Optional[dict]:
        data = await self.get_json(
            f"products(upc={upc})",
            {"format": "json", "show": PRODUCT_FIELDS, "pageSize": 1},
        )
        products = data.get("products") or []
        return products[0] if products else None

    async def _store_locations(self, sku: str, zip_code: str, radius: int) -> list[StoreLocation]:
        """Per-store availability near a ZIP. Failures degrade to no stores."""
        try:
            data = await self.get_json(
                f"products/{sku}/stores.json",
                {"format": "json", "area": f"{zip_code},{radius}", "show": STORE_FIELDS},
            )
        except RetailerError as e:
            self.log.warning(f"Store availability lookup failed for SKU {sku}: {e}")
            return []

        locations = []
        for store in data.get("stores") or []:
            locations.append(StoreLocation(
                store_id=str(store.get("storeId", "")),
                name=store.get("storeName") or store.get("name") or "",
                address=store.get("address") or "",
                city=store.get("city") or "",
                state=store.get("region") or "",
                zip_code=store.get("postalCode") or "",
                distance_miles=store.get("distance"),
                in_stock=bool(store.get("inStoreAvailability", True)),
                quantity=1 if store.get("lowStock") else None,
            ))
        return locations

    def parse_product(
        self,
        product: dict,
        product_id: int,
        stores: Optional[list[StoreLocation]] = None,
    ) -> AvailabilityRecord:
        in_stock = bool(product.get("onlineAvailability") or product.get("inStoreAvailability"))
        regular = _money(product.get("regularPrice"))
        price = _money(product.get("salePrice")) or regular
        return self.build_record(
            product_id,
            in_stock,
            price=price,
            original_price=regular if regular is not None and regular != price else None,
            product_url=product.get("url") or "",
            cart_url=product.get("addToCartUrl"),
            store_locations=stores or [],
            metadata={
                "sku": product.get("sku"),
                "name": product.get("name"),
                "onSale": product.get("onSale"),
                "image": product.get("image"),
                "categoryPath": product.get("categoryPath"),
            },
        )

    async def _check_availability(self, request: AvailabilityRequest) -> AvailabilityRecord:
        product = None
        if request.sku:
            product = await self._get_by_sku(request.sku)
        elif request.upc:
            product = await self._get_by_upc(request.upc)

        if not product:
            raise self.not_found(f"Product {request.product_id}")

        stores: list[StoreLocation] = []
        if request.zip_code:
            stores = await self._store_locations(str(product.get("sku")), request.zip_code, request.radius_miles)

        self.log.info(f"Checked availability for product {request.product_id}")
        return self.parse_product(product, request.product_id, stores)

    async def _search_products(self, query: str) -> list[AvailabilityRecord]:
        data = await self.get_json(
            f"products(search={query.replace(' ', '&search=')})",
            {"format": "json", "show": PRODUCT_FIELDS, "pageSize": 20},
        )
        results = []
        for product in data.get("products") or []:
            if not is_in_category(product.get("name") or ""):
                continue
            results.append(self.parse_product(product, 0))
        self.log.info(f"Search '{query}' returned {len(results)} in-category products")
        return results

    async def _probe(self) -> None:
        await self.get_json("products", {"format": "json", "pageSize": 1})
