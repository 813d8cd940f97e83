"""Headless browser rendering, the last acquisition step."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from dropwatch.config import settings
from dropwatch.ingest.proxy_manager import ProxyInfo
from dropwatch.ingest.user_agent_pool import BrowserIdentity

logger = logging.getLogger(__name__)


@dataclass
class RenderedPage:
    """Outcome of rendering a page in the browser."""
    status_code: int
    html: str
    headers: dict = field(default_factory=dict)


class BrowserRenderer:
    """Playwright-backed renderer with a lazily launched shared browser."""

    def __init__(self):
        self._playwright = None
        self._browser = None
        self._browser_lock = asyncio.Lock()

    async def _ensure_browser(self):
        """Ensure Playwright browser is initialized."""
        async with self._browser_lock:
            if self._playwright is None:
                from playwright.async_api import async_playwright
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=[
                        "--disable-blink-features=AutomationControlled",
                        "--disable-dev-shm-usage",
                        "--no-sandbox",
                    ],
                )

    async def render(
        self,
        url: str,
        identity: BrowserIdentity,
        timeout: float,
        proxy: Optional[ProxyInfo] = None,
    ) -> RenderedPage:
        """
        Load ``url`` in a fresh browser context and return the rendered HTML.

        Args:
            url: Page to render
            identity: Browser identity to present
            timeout: Navigation budget in seconds
            proxy: Optional proxy for the context
        """
        await self._ensure_browser()

        width, height = identity.viewport
        context_kwargs = {
            "user_agent": identity.user_agent,
            "viewport": {"width": width, "height": height},
            "locale": "en-US",
            "extra_http_headers": {"Accept-Language": "en-US,en;q=0.9"},
        }
        if proxy:
            context_kwargs["proxy"] = proxy.playwright_config

        context = await self._browser.new_context(**context_kwargs)
        try:
            page = await context.new_page()
            response = await page.goto(
                url, wait_until="domcontentloaded", timeout=int(timeout * 1000)
            )
            # Let client-side fulfillment widgets settle
            try:
                await page.wait_for_load_state("networkidle", timeout=5000)
            except Exception:
                logger.debug(f"Network did not go idle for {url}, using current DOM")
            html = await page.content()
            status = response.status if response else 200
            headers = await response.all_headers() if response else {}
            return RenderedPage(status_code=status, html=html, headers=headers)
        finally:
            await context.close()

    async def close(self):
        """Close browser and Playwright."""
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None


def get_renderer() -> Optional[BrowserRenderer]:
    """Renderer for the acquisition layer, or None when rendering is disabled."""
    if not settings.browser_render_enabled:
        return None
    return browser_renderer


# Global renderer instance
browser_renderer = BrowserRenderer()
