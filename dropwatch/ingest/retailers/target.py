"""Target adapter (scraped search results and product pages)."""

import logging
import re

from dropwatch.ingest.adapter import parse_price
from dropwatch.ingest.fetchers.static import ScrapedProduct, ScrapedRetailerAdapter
from dropwatch.ingest.ship_date import parse_ship_date

logger = logging.getLogger(__name__)

_TCIN = re.compile(r"/p/[^/]+/(?:-/)?A?-?(\d+)")


class TargetAdapter(ScrapedRetailerAdapter):
    """Target renders search results client-side, so search pages are rendered."""

    search_path = "/s?searchTerm={query}"
    render_search = True
    card_selectors = [
        'li[data-test="list-entry-product-card"]',
        'div[data-test="product-card"]',
        "div.h-padding-h-default",
    ]
    title_selectors = [
        'a[data-test="product-title"]',
        'a[data-test="product-card-title"]',
        'a[href*="/p/"]',
    ]
    price_selectors = ['[data-test="current-price"]', '[data-test="current-price-container"]']
    was_price_selectors = ['[data-test="was-price"]', "s"]
    availability_selectors = ['[data-test="fulfillment-availability"]']
    shipping_selectors = [
        '[data-test="fulfillment-cell-shipping"]',
        '[data-test="shippingBlock"]',
        '[data-test="fulfillment-shipping"]',
    ]
    fallback_link_selector = 'a[href*="/p/"]'
    sku_pattern = _TCIN

    async def enrich(self, product: ScrapedProduct) -> ScrapedProduct:
        """Fetch the product page only when the card carried no shipping info."""
        if product.shipping_text or product.ship_date:
            return product

        parser = await self.get_html(product.url, render=True)
        body = parser.body
        if body is None:
            return product

        availability = self._text(body, self.availability_selectors) or product.availability
        shipping_text = self._text(body, self.shipping_selectors) or product.shipping_text
        price = product.price or parse_price(self._text(body, self.price_selectors))
        original = product.original_price or parse_price(self._text(body, self.was_price_selectors))

        sku = None
        for data in self.json_ld_products(parser):
            candidate = str(data.get("sku") or data.get("productID") or data.get("productId") or "")
            if candidate.isdigit():
                sku = candidate
                break
        sku = sku or product.sku or self.extract_sku(product.url)

        return ScrapedProduct(
            name=product.name,
            url=product.url,
            sku=sku,
            price=price,
            original_price=original,
            image_url=product.image_url,
            availability=availability,
            shipping_text=shipping_text,
            ship_date=parse_ship_date(shipping_text) or product.ship_date,
        )
