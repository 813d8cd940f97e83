"""Costco adapter (scraped catalog search)."""

import logging
from typing import Optional

from selectolax.parser import Node

from dropwatch.ingest.fetchers.static import ScrapedProduct, ScrapedRetailerAdapter

logger = logging.getLogger(__name__)


class CostcoAdapter(ScrapedRetailerAdapter):
    """Costco tiles carry no availability text; a priced tile is purchasable."""

    search_path = "/CatalogSearch?dept=All&keyword={query}"
    card_selectors = [".product-tile", '[data-testid="ProductTile"]', ".product"]
    title_selectors = [".description a", '[data-testid="ProductTile"] a', "a.product-title", "a"]
    price_selectors = [".price", '[data-testid="price"]']
    was_price_selectors = [".sale-price .was", ".strike-through"]
    availability_selectors = [".out-of-stock", ".product-availability", '[data-testid="out-of-stock"]']
    shipping_selectors = [".shipping-info", ".delivery-info"]
    sku_attribute = "data-item-number"

    def parse_card(self, card: Node) -> Optional[ScrapedProduct]:
        product = super().parse_card(card)
        if product is not None and not product.availability and product.price is not None:
            product.availability = "In Stock"
        return product
