"""Walmart adapter using the affiliate product API."""

import logging
from decimal import Decimal
from typing import Optional

from dropwatch.ingest.base import AvailabilityRecord, AvailabilityRequest, StoreLocation
from dropwatch.ingest.errors import ErrorType, RetailerError
from dropwatch.ingest.fetchers.api import ApiRetailerAdapter
from dropwatch.ingest.filters import is_in_category

logger = logging.getLogger(__name__)

TRADING_CARDS_CATEGORY = "4171"

# Walmart wording -> text understood by determine_availability_status
_STATUS_TEXT = {
    "available": "in stock",
    "limited stock": "limited",
    "pre-order": "pre-order",
    "preorder": "pre-order",
}


class WalmartAdapter(ApiRetailerAdapter):
    """Maps Walmart item JSON into availability records."""

    api_key_param = None

    def _auth_headers(self) -> dict[str, str]:
        if self.config.api_key:
            return {"WM_CONSUMER.ID": self.config.api_key}
        return {}

    def build_cart_url(self, product_url: str, sku: Optional[str] = None) -> Optional[str]:
        return f"{product_url}?athbdg=L1600" if product_url else None

    async def _get_item(self, item_id: str) -> Optional[dict]:
        try:
            data = await self.get_json(f"items/{item_id}", {"format": "json"})
        except RetailerError as e:
            if e.error_type == ErrorType.NOT_FOUND:
                return None
            raise
        return data or None

    async def _get_by_upc(self, upc: str) -> Optional[dict]:
        try:
            data = await self.get_json("items", {"upc": upc, "format": "json"})
        except RetailerError as e:
            if e.error_type == ErrorType.NOT_FOUND:
                return None
            raise
        items = data.get("items") or []
        return items[0] if items else None

    async def _store_locations(self, zip_code: str, radius: int) -> list[StoreLocation]:
        try:
            data = await self.get_json("stores", {"zip": zip_code, "radius": radius, "format": "json"})
        except RetailerError as e:
            self.log.warning(f"Store locator failed for ZIP {zip_code}: {e}")
            return []

        stores = (data.get("payload") or {}).get("stores") or []
        locations = []
        for store in stores:
            address = store.get("address") or {}
            locations.append(StoreLocation(
                store_id=str(store.get("id", "")),
                name=store.get("displayName") or "",
                address=address.get("address") or "",
                city=address.get("city") or "",
                state=address.get("state") or "",
                zip_code=address.get("postalCode") or "",
                distance_miles=store.get("distance"),
                in_stock=True,
            ))
        return locations

    def parse_item(
        self,
        item: dict,
        product_id: int,
        stores: Optional[list[StoreLocation]] = None,
    ) -> AvailabilityRecord:
        status = str(item.get("availabilityStatus") or "")
        in_stock = status == "Available" or item.get("stock") == "Available" or status == "Limited Stock"
        price = Decimal(str(item["salePrice"])) if item.get("salePrice") is not None else None
        msrp = Decimal(str(item["msrp"])) if item.get("msrp") else None
        product_url = item.get("productUrl") or ""
        images = item.get("imageEntities") or [{}]
        return self.build_record(
            product_id,
            in_stock,
            availability_text=_STATUS_TEXT.get(status.lower(), status),
            price=price,
            original_price=msrp if msrp is not None and msrp != price else None,
            product_url=product_url,
            cart_url=self.build_cart_url(product_url),
            store_locations=stores or [],
            metadata={
                "sku": item.get("itemId"),
                "itemId": item.get("itemId"),
                "name": item.get("name"),
                "upc": item.get("upc"),
                "brandName": item.get("brandName"),
                "categoryPath": item.get("categoryPath"),
                "image": images[0].get("mediumImage"),
            },
        )

    async def _check_availability(self, request: AvailabilityRequest) -> AvailabilityRecord:
        item = None
        if request.sku:
            item = await self._get_item(request.sku)
        elif request.upc:
            item = await self._get_by_upc(request.upc)

        if not item:
            raise self.not_found(f"Product {request.product_id}")

        stores: list[StoreLocation] = []
        if request.zip_code:
            stores = await self._store_locations(request.zip_code, request.radius_miles)
        return self.parse_item(item, request.product_id, stores)

    async def _search_products(self, query: str) -> list[AvailabilityRecord]:
        data = await self.get_json("search", {
            "query": query,
            "format": "json",
            "categoryId": TRADING_CARDS_CATEGORY,
            "numItems": 25,
            "start": 1,
        })
        results = []
        for item in data.get("items") or []:
            if not is_in_category(item.get("name") or "", item.get("shortDescription") or ""):
                continue
            results.append(self.parse_item(item, 0))
        self.log.info(f"Search '{query}' returned {len(results)} in-category products")
        return results

    async def _probe(self) -> None:
        await self.get_json("search", {"query": "pokemon", "format": "json", "numItems": 1})
