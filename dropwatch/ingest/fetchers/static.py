"""Base for adapters that scrape retailer HTML."""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from difflib import SequenceMatcher
from typing import Iterable, List, Optional, Tuple, Union
from urllib.parse import quote_plus

from selectolax.parser import HTMLParser, Node

from dropwatch.ingest.adapter import BaseRetailerAdapter, parse_price
from dropwatch.ingest.base import AvailabilityRecord, AvailabilityRequest
from dropwatch.ingest.filters import is_in_category
from dropwatch.ingest.ship_date import has_shipping_cue, parse_ship_date

logger = logging.getLogger(__name__)

_PRICE_IN_TEXT = re.compile(r"\$\s*([0-9][0-9,]*(?:\.[0-9]{2})?)")


@dataclass
class ScrapedProduct:
    """Fields recovered from one search-result card or product page."""
    name: str
    url: str
    sku: Optional[str] = None
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    image_url: Optional[str] = None
    availability: Optional[str] = None
    shipping_text: Optional[str] = None
    ship_date: Optional[datetime] = None

    @property
    def has_shipping_signal(self) -> bool:
        return self.ship_date is not None or has_shipping_cue(self.shipping_text)


def derive_in_stock(availability: Optional[str]) -> bool:
    """Conservative reading of availability text. Unknown text means not in stock."""
    if not availability:
        return False
    text = availability.lower()
    if "out of stock" in text or "sold out" in text or "unavailable" in text:
        return False
    if "in stock" in text or "add to cart" in text or "ship it" in text or "pickup" in text:
        return True
    return False


class ScrapedRetailerAdapter(BaseRetailerAdapter):
    """
    Adapter that discovers products through the retailer's search page.

    Subclasses describe the page with selector lists. Parsing is defensive:
    every field is looked up through its list of selectors, and missing
    fields stay empty. A page with zero matching cards is a normal, empty
    result.
    """

    search_path: str = "/search?q={query}"
    render_search: bool = False
    card_selectors: List[str] = []
    title_selectors: List[str] = []
    price_selectors: List[str] = []
    was_price_selectors: List[str] = []
    availability_selectors: List[str] = []
    shipping_selectors: List[str] = []
    fallback_link_selector: Optional[str] = None
    sku_pattern: Optional[re.Pattern] = None
    sku_attribute: Optional[str] = None

    # ------------------------------------------------------------------
    # Selector helpers
    # ------------------------------------------------------------------

    def _try_selectors(
        self,
        node: Union[HTMLParser, Node],
        selectors: Iterable[str],
    ) -> Tuple[Optional[str], Optional[Node]]:
        """
        Try selectors in order and return the first match.

        Returns:
            Tuple of (successful_selector, element) or (None, None)
        """
        for selector in selectors:
            try:
                elem = node.css_first(selector)
            except Exception as e:
                logger.debug(f"Selector error on {self.retailer_id}: {selector[:50]} - {e}")
                continue
            if elem is not None:
                return selector, elem
        return None, None

    def _text(self, node: Union[HTMLParser, Node], selectors: Iterable[str]) -> str:
        _, elem = self._try_selectors(node, selectors)
        return elem.text(strip=True) if elem is not None else ""

    def _select_all(self, parser: HTMLParser, selectors: Iterable[str]) -> List[Node]:
        """Nodes for the first selector that matches anything."""
        for selector in selectors:
            try:
                nodes = parser.css(selector)
            except Exception as e:
                logger.debug(f"Selector error on {self.retailer_id}: {selector[:50]} - {e}")
                continue
            if nodes:
                return nodes
        return []

    def abs_url(self, href: str) -> str:
        if not href:
            return ""
        if href.startswith("http"):
            return href
        base = self.config.base_url.rstrip("/")
        return f"{base}{'' if href.startswith('/') else '/'}{href}"

    @staticmethod
    def json_ld_products(parser: HTMLParser) -> List[dict]:
        """Product objects from the page's JSON-LD blocks."""
        products: List[dict] = []
        for script in parser.css('script[type="application/ld+json"]'):
            raw = (script.text() or "").strip()
            if not raw:
                continue
            try:
                data = json.loads(raw)
            except ValueError:
                continue
            for obj in data if isinstance(data, list) else [data]:
                if not isinstance(obj, dict):
                    continue
                kind = str(obj.get("@type") or obj.get("type") or "").lower()
                if "product" in kind:
                    products.append(obj)
        return products

    # ------------------------------------------------------------------
    # Page parsing
    # ------------------------------------------------------------------

    def extract_sku(self, href: str, card: Optional[Node] = None) -> Optional[str]:
        if card is not None and self.sku_attribute:
            value = card.attributes.get(self.sku_attribute)
            if not value:
                _, elem = self._try_selectors(card, [f"[{self.sku_attribute}]"])
                value = elem.attributes.get(self.sku_attribute) if elem is not None else None
            if value:
                return value
        if self.sku_pattern and href:
            match = self.sku_pattern.search(href)
            if match:
                return match.group(1)
        return None

    def parse_card(self, card: Node) -> Optional[ScrapedProduct]:
        """One search-result card. Cards without a title link are skipped."""
        _, title = self._try_selectors(card, self.title_selectors)
        if title is None:
            return None
        name = title.text(strip=True)
        href = title.attributes.get("href") or ""
        if not name or not href:
            return None

        _, img = self._try_selectors(card, ["img"])
        image = (img.attributes.get("src") or img.attributes.get("data-src")) if img is not None else None
        shipping_text = self._text(card, self.shipping_selectors) or None

        return ScrapedProduct(
            name=name,
            url=self.abs_url(href),
            sku=self.extract_sku(href, card),
            price=parse_price(self._text(card, self.price_selectors)),
            original_price=parse_price(self._text(card, self.was_price_selectors)),
            image_url=self.abs_url(image) if image else None,
            availability=self._text(card, self.availability_selectors) or None,
            shipping_text=shipping_text,
            ship_date=parse_ship_date(shipping_text),
        )

    def _nearby_price(self, anchor: Node) -> Optional[Decimal]:
        container = anchor.parent
        while container is not None and container.tag not in ("li", "div", "article"):
            container = container.parent
        if container is None:
            return None
        match = _PRICE_IN_TEXT.search(container.text() or "")
        return parse_price(match.group(0)) if match else None

    def parse_search_page(self, parser: HTMLParser) -> List[ScrapedProduct]:
        """All products on a search page, de-duplicated by URL."""
        products: List[ScrapedProduct] = []
        for card in self._select_all(parser, self.card_selectors):
            product = self.parse_card(card)
            if product:
                products.append(product)

        if not products and self.fallback_link_selector:
            for anchor in parser.css(self.fallback_link_selector):
                name = anchor.text(strip=True)
                href = anchor.attributes.get("href") or ""
                if not name or not href:
                    continue
                products.append(ScrapedProduct(
                    name=name,
                    url=self.abs_url(href),
                    sku=self.extract_sku(href),
                    price=self._nearby_price(anchor),
                ))

        deduped: dict[str, ScrapedProduct] = {}
        for product in products:
            deduped.setdefault(product.url.split("?")[0], product)
        return list(deduped.values())

    def to_record(self, product: ScrapedProduct, product_id: int = 0) -> AvailabilityRecord:
        """A parsed ship date or shipping cue outranks the availability text."""
        in_stock = True if product.has_shipping_signal else derive_in_stock(product.availability)
        return self.build_record(
            product_id,
            in_stock,
            availability_text=product.availability or "",
            price=product.price,
            original_price=product.original_price,
            product_url=product.url,
            cart_url=self.build_cart_url(product.url, product.sku),
            metadata={
                "sku": product.sku,
                "name": product.name,
                "image": product.image_url,
                "availabilityText": product.availability,
                "shippingText": product.shipping_text,
                "shipDate": product.ship_date.isoformat() if product.ship_date else None,
            },
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def search_url(self, query: str) -> str:
        return self.abs_url(self.search_path.format(query=quote_plus(query)))

    async def get_html(self, url: str, render: bool = False) -> HTMLParser:
        result = await self.make_request(url, render=render)
        return HTMLParser(result.body)

    async def search_list(self, query: str) -> List[ScrapedProduct]:
        parser = await self.get_html(self.search_url(query), render=self.render_search)
        return self.parse_search_page(parser)

    async def enrich(self, product: ScrapedProduct) -> ScrapedProduct:
        """Recover missing detail from the product page. Default: nothing to add."""
        return product

    @staticmethod
    def similarity(a: str, b: str) -> float:
        return SequenceMatcher(None, a.lower(), b.lower()).ratio()

    def best_match(
        self, products: List[ScrapedProduct], request: AvailabilityRequest
    ) -> Optional[ScrapedProduct]:
        """Pick the search result that corresponds to the request."""
        if not products:
            return None
        if request.sku:
            for product in products:
                if product.sku and str(product.sku) == str(request.sku):
                    return product
        if request.product_url:
            wanted = request.product_url.split("?")[0]
            for product in products:
                if product.url.split("?")[0] == wanted:
                    return product
        if request.query:
            return max(products, key=lambda p: self.similarity(p.name, request.query))
        return products[0]

    async def _search_products(self, query: str) -> list[AvailabilityRecord]:
        products = await self.search_list(query)
        records = [self.to_record(p) for p in products if is_in_category(p.name)]
        self.log.info(f"Search '{query}' returned {len(records)} in-category products of {len(products)}")
        return records

    async def _check_availability(self, request: AvailabilityRequest) -> AvailabilityRecord:
        query = request.upc or request.sku or request.query
        if not query:
            raise self.not_found(f"Search term for product {request.product_id}")
        product = self.best_match(await self.search_list(query), request)
        if product is None:
            raise self.not_found(f"Product for '{query}'")
        product = await self.enrich(product)
        return self.to_record(product, request.product_id)

    async def _probe(self) -> None:
        await self.make_request(self.search_url("pokemon tcg"), render=self.render_search)
