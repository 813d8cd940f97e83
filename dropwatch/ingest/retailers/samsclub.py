"""Sam's Club adapter (scraped search results)."""

import logging
from typing import Optional

from selectolax.parser import Node

from dropwatch.ingest.fetchers.static import ScrapedProduct, ScrapedRetailerAdapter

logger = logging.getLogger(__name__)


class SamsClubAdapter(ScrapedRetailerAdapter):
    """Sam's Club product cards; item numbers live in data-automation-id."""

    search_path = "/s/{query}"
    card_selectors = [".sc-product-card", ".ProductTile", '[data-testid="productTile"]']
    title_selectors = [".sc-product-card-title a", ".ProductTile-title a", "a"]
    price_selectors = [".sc-price", ".Price", '[data-testid="price"]']
    was_price_selectors = [".sc-price-was", ".Price-was"]
    availability_selectors = [".sc-product-card-oos", ".sc-channel-availability", ".ProductTile-availability"]
    shipping_selectors = [".sc-shipping-info", '[data-testid="shipping-message"]']
    sku_attribute = "data-automation-id"

    def parse_card(self, card: Node) -> Optional[ScrapedProduct]:
        product = super().parse_card(card)
        if product is not None and not product.availability and product.price is not None:
            product.availability = "In Stock"
        return product
