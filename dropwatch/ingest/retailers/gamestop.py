"""GameStop adapter (scraped, rendered search pages)."""

import logging
import re

from dropwatch.ingest.adapter import parse_price
from dropwatch.ingest.fetchers.static import ScrapedProduct, ScrapedRetailerAdapter
from dropwatch.ingest.ship_date import parse_ship_date

logger = logging.getLogger(__name__)


class GameStopAdapter(ScrapedRetailerAdapter):
    """GameStop sits behind a bot wall, so search pages are rendered."""

    search_path = "/search/?q={query}"
    render_search = True
    card_selectors = [
        "div.product-grid-tile",
        "div.product-grid-item",
        "div.product-tile",
        "div.ProductCard",
        "li.grid-tile",
        'article[class*="product"]',
    ]
    title_selectors = [
        "a.product-name",
        "a.product-title",
        "a.ProductCard__Title",
        ".product-name a",
        ".ProductCard a",
        'a[href*="/product/"]',
    ]
    price_selectors = [".actual-price", ".product-price", ".price", '[data-qa="price"]', '[data-qa="product-price"]']
    was_price_selectors = [".strike-price", ".was-price", ".original-price", "s"]
    availability_selectors = [".availability", '[data-qa="availability"]', ".pickup-availability"]
    shipping_selectors = [".shipping-availability", '[data-qa="shipping"]']
    fallback_link_selector = 'a[href*="/product/"], a[href*="/products/"]'
    sku_pattern = re.compile(r"/(?:product|products)/(?:[^/]+/)*(\d+)[^/]*$|sku=(\d+)", re.IGNORECASE)

    def extract_sku(self, href, card=None):
        match = self.sku_pattern.search(href or "")
        if not match:
            return None
        return match.group(1) or match.group(2)

    async def enrich(self, product: ScrapedProduct) -> ScrapedProduct:
        if product.shipping_text or product.ship_date:
            return product

        parser = await self.get_html(product.url, render=True)
        body = parser.body
        if body is None:
            return product

        shipping_text = self._text(body, self.shipping_selectors) or None
        return ScrapedProduct(
            name=product.name,
            url=product.url,
            sku=product.sku,
            price=product.price or parse_price(self._text(body, self.price_selectors)),
            original_price=product.original_price or parse_price(self._text(body, self.was_price_selectors)),
            image_url=product.image_url,
            availability=self._text(body, self.availability_selectors) or product.availability,
            shipping_text=shipping_text,
            ship_date=parse_ship_date(shipping_text),
        )
