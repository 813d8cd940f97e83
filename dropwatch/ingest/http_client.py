"""Outbound HTTP acquisition with escalation.

Every adapter request goes through ``HttpAcquirer.fetch``. The steps are
tried cheapest first:

1. DIRECT: plain request with the adapter's stable browser identity.
2. ROTATED: for scraping adapters answered with 403/429, one retry on a
   fresh session (new proxy, unlocker session or cookie jar).
3. RENDERED: if the rotated retry also fails, the page is loaded in a
   headless browser with an extended timeout.

API adapters never escalate. Their 403/429 and network failures are raised
as classified, retryable-aware ``RetailerError``s for the caller to handle.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from dropwatch import metrics
from dropwatch.config import settings
from dropwatch.ingest.base import AdapterConfig, AdapterType
from dropwatch.ingest.errors import (
    AcquisitionError,
    ErrorType,
    RetailerError,
    classify_status,
    from_exception,
)
from dropwatch.ingest.proxy_manager import ProxyRotator, RotatedSession, proxy_rotator
from dropwatch.ingest.rate_limiter import RateLimiter, rate_limiter
from dropwatch.ingest.user_agent_pool import BrowserIdentity, user_agent_pool

logger = logging.getLogger(__name__)

BLOCK_STATUSES = (403, 429)


class FetchStep(Enum):
    """Acquisition steps in escalation order."""
    DIRECT = "direct"
    ROTATED = "rotated"
    RENDERED = "rendered"


@dataclass
class FetchResult:
    """Successful response from one of the acquisition steps."""
    status_code: int
    body: str
    headers: dict = field(default_factory=dict)
    step: FetchStep = FetchStep.DIRECT
    duration_ms: float = 0.0

    def json(self) -> Any:
        return json.loads(self.body)


class HttpAcquirer:
    """Performs outbound fetches for all adapters."""

    def __init__(
        self,
        limiter: Optional[RateLimiter] = None,
        rotator: Optional[ProxyRotator] = None,
        renderer=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            limiter: Politeness limiter (defaults to the global one)
            rotator: Session rotator (defaults to the global one)
            renderer: Object with an async ``render(url, identity, timeout, proxy)``;
                      None disables the rendered step
            transport: httpx transport override, used by tests
        """
        self.limiter = limiter or rate_limiter
        self.rotator = rotator or proxy_rotator
        self.renderer = renderer
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._client_lock = asyncio.Lock()
        self._retired: set[httpx.AsyncClient] = set()
        self._retire_tasks: set[asyncio.Task] = set()
        self.last_request_at: dict[str, float] = {}

    def _new_client(self, identity: BrowserIdentity, proxy_url: Optional[str] = None) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {
            "follow_redirects": True,
            "headers": identity.headers(),
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif proxy_url:
            kwargs["proxy"] = proxy_url
        return httpx.AsyncClient(**kwargs)

    async def _get_client(self, adapter_id: str, identity: BrowserIdentity) -> httpx.AsyncClient:
        """Get or create the adapter's long-lived client."""
        async with self._client_lock:
            client = self._clients.get(adapter_id)
            if client is None:
                session = self.rotator.current(adapter_id)
                proxy_url = session.proxy.url if session and session.proxy else None
                client = self._new_client(identity, proxy_url)
                self._clients[adapter_id] = client
            return client

    async def _replace_client(self, adapter_id: str, identity: BrowserIdentity) -> httpx.AsyncClient:
        """
        Publish a fresh client for the adapter and retire the old one.

        Other requests may still be in flight on the old client, so it is
        closed only after ``retired_client_grace_seconds``.
        """
        async with self._client_lock:
            old = self._clients.pop(adapter_id, None)
            session = self.rotator.current(adapter_id)
            proxy_url = session.proxy.url if session and session.proxy else None
            client = self._new_client(identity, proxy_url)
            self._clients[adapter_id] = client
        if old is not None:
            self._retired.add(old)
            task = asyncio.create_task(self._close_later(old, settings.retired_client_grace_seconds))
            self._retire_tasks.add(task)
            task.add_done_callback(self._retire_tasks.discard)
        return client

    async def _close_later(self, client: httpx.AsyncClient, delay: float) -> None:
        await asyncio.sleep(delay)
        self._retired.discard(client)
        await client.aclose()

    async def close(self):
        """Close all HTTP clients, including retired ones still in their grace period."""
        for task in list(self._retire_tasks):
            task.cancel()
        async with self._client_lock:
            clients = list(self._clients.values()) + list(self._retired)
            self._clients.clear()
            self._retired.clear()
        for client in clients:
            await client.aclose()

    @staticmethod
    def politeness_interval(adapter: AdapterConfig) -> float:
        """Minimum seconds between requests for an adapter."""
        interval = adapter.min_request_interval
        if adapter.adapter_type == AdapterType.SCRAPING:
            interval = max(interval, settings.scraping_min_interval_seconds)
        return interval

    async def fetch(
        self,
        url: str,
        adapter: AdapterConfig,
        *,
        render: bool = False,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        """
        Fetch ``url`` on behalf of ``adapter``, escalating as needed.

        Args:
            url: Absolute URL to fetch
            adapter: Configuration of the calling adapter
            render: Go straight to the rendered step
            headers: Extra headers layered over the adapter identity
            params: Query parameters
            timeout: Direct-step timeout in seconds

        Returns:
            FetchResult from the first step that succeeded

        Raises:
            RetailerError: Classified failure (AcquisitionError once escalation is exhausted)
        """
        adapter_id = adapter.retailer_id
        scraping = adapter.adapter_type == AdapterType.SCRAPING
        identity = user_agent_pool.identity_for(adapter_id)
        timeout = timeout or adapter.timeout or settings.direct_timeout_seconds

        await self.limiter.acquire(adapter_id, self.politeness_interval(adapter))
        self.last_request_at[adapter_id] = time.time()

        if render:
            return await self._render_step(url, adapter_id, identity, FetchStep.DIRECT)

        try:
            result = await self._direct_step(url, adapter_id, identity, headers, params, timeout, scraping)
        except RetailerError as e:
            if not (scraping and e.status_code in BLOCK_STATUSES):
                raise
            logger.info(f"{adapter_id} got HTTP {e.status_code} for {url}, rotating session")
            metrics.record_fetch_escalation(adapter_id, FetchStep.DIRECT.value, FetchStep.ROTATED.value)
            return await self._escalate(url, adapter_id, identity, headers, params, timeout)
        return result

    async def _escalate(
        self,
        url: str,
        adapter_id: str,
        identity: BrowserIdentity,
        headers: Optional[dict[str, str]],
        params: Optional[dict[str, Any]],
        timeout: float,
    ) -> FetchResult:
        session = await self.rotator.rotate(adapter_id)
        try:
            return await self._rotated_step(url, adapter_id, identity, session, headers, params, timeout)
        except RetailerError as e:
            logger.warning(f"{adapter_id} rotated retry failed for {url}: {e.message}")
            last_error = e

        if self.renderer is None:
            raise AcquisitionError(
                last_error.message, adapter_id, last_error.error_type,
                last_error.status_code, step=FetchStep.ROTATED.value,
            )

        metrics.record_fetch_escalation(adapter_id, FetchStep.ROTATED.value, FetchStep.RENDERED.value)
        if params:
            url = str(httpx.URL(url, params=params))
        return await self._render_step(url, adapter_id, identity, FetchStep.ROTATED, session)

    async def _direct_step(
        self,
        url: str,
        adapter_id: str,
        identity: BrowserIdentity,
        headers: Optional[dict[str, str]],
        params: Optional[dict[str, Any]],
        timeout: float,
        scraping: bool,
    ) -> FetchResult:
        client = await self._get_client(adapter_id, identity)
        return await self._request(
            client, url, adapter_id, headers, params, timeout, FetchStep.DIRECT, scraping=scraping
        )

    async def _rotated_step(
        self,
        url: str,
        adapter_id: str,
        identity: BrowserIdentity,
        session: RotatedSession,
        headers: Optional[dict[str, str]],
        params: Optional[dict[str, Any]],
        timeout: float,
    ) -> FetchResult:
        if settings.unlocker_api_url and settings.unlocker_api_token:
            return await self._unlocker_request(url, adapter_id, identity, session, params, timeout)

        # Fresh cookie jar (and proxy, if any) for this adapter from now on
        client = await self._replace_client(adapter_id, identity)
        return await self._request(
            client, url, adapter_id, headers, params, timeout, FetchStep.ROTATED, scraping=True
        )

    async def _request(
        self,
        client: httpx.AsyncClient,
        url: str,
        adapter_id: str,
        headers: Optional[dict[str, str]],
        params: Optional[dict[str, Any]],
        timeout: float,
        step: FetchStep,
        scraping: bool = False,
    ) -> FetchResult:
        start = time.monotonic()
        try:
            response = await client.get(url, headers=headers, params=params, timeout=timeout)
        except httpx.HTTPError as e:
            metrics.record_fetch_attempt(adapter_id, step.value, False)
            raise from_exception(e, adapter_id, scraping=scraping) from e
        duration_ms = (time.monotonic() - start) * 1000

        ok = response.status_code < 400
        metrics.record_fetch_attempt(adapter_id, step.value, ok)
        if not ok:
            raise classify_status(response.status_code, adapter_id, scraping=scraping)

        return FetchResult(
            status_code=response.status_code,
            body=response.text,
            headers=dict(response.headers),
            step=step,
            duration_ms=duration_ms,
        )

    async def _unlocker_request(
        self,
        url: str,
        adapter_id: str,
        identity: BrowserIdentity,
        session: RotatedSession,
        params: Optional[dict[str, Any]],
        timeout: float,
    ) -> FetchResult:
        """Fetch through the unlocker gateway with a sticky session id."""
        payload = {
            "url": url,
            "method": "GET",
            "params": params or {},
            "render": False,
            "country": "us",
            "zone": settings.unlocker_zone,
            "session": session.session_id,
            "headers": {
                "User-Agent": identity.user_agent,
                "Accept-Language": "en-US,en;q=0.9",
            },
        }
        gateway_headers = {
            "Authorization": f"Bearer {settings.unlocker_api_token}",
            "Content-Type": "application/json",
        }
        kwargs: dict[str, Any] = {}
        if self._transport is not None:
            kwargs["transport"] = self._transport

        start = time.monotonic()
        async with httpx.AsyncClient(**kwargs) as client:
            try:
                response = await client.post(
                    settings.unlocker_api_url, json=payload, headers=gateway_headers, timeout=timeout * 2
                )
            except httpx.HTTPError as e:
                metrics.record_fetch_attempt(adapter_id, FetchStep.ROTATED.value, False)
                raise from_exception(e, adapter_id, scraping=True) from e

        ok = response.status_code < 400
        metrics.record_fetch_attempt(adapter_id, FetchStep.ROTATED.value, ok)
        if not ok:
            raise classify_status(response.status_code, adapter_id, scraping=True)

        body = response.text
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            content = data.get("content") or (data.get("solution") or {}).get("content") \
                or (data.get("response") or {}).get("body")
            if isinstance(content, str):
                body = content

        return FetchResult(
            status_code=response.status_code,
            body=body,
            headers=dict(response.headers),
            step=FetchStep.ROTATED,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    async def _render_step(
        self,
        url: str,
        adapter_id: str,
        identity: BrowserIdentity,
        previous: FetchStep,
        session: Optional[RotatedSession] = None,
    ) -> FetchResult:
        if self.renderer is None:
            raise AcquisitionError(
                "Rendering is disabled", adapter_id, ErrorType.SERVER_ERROR, step=FetchStep.RENDERED.value
            )

        timeout = settings.render_timeout_seconds
        proxy = session.proxy if session else None
        start = time.monotonic()
        try:
            page = await asyncio.wait_for(
                self.renderer.render(url, identity, timeout, proxy), timeout=timeout + 5
            )
        except Exception as e:
            metrics.record_fetch_attempt(adapter_id, FetchStep.RENDERED.value, False)
            error = from_exception(e, adapter_id, scraping=True)
            logger.warning(f"{adapter_id} render failed after {previous.value} for {url}: {error.message}")
            raise AcquisitionError(
                error.message, adapter_id, error.error_type, error.status_code, step=FetchStep.RENDERED.value
            ) from e

        ok = page.status_code < 400
        metrics.record_fetch_attempt(adapter_id, FetchStep.RENDERED.value, ok)
        if not ok:
            error = classify_status(page.status_code, adapter_id, scraping=True)
            raise AcquisitionError(
                error.message, adapter_id, error.error_type, page.status_code, step=FetchStep.RENDERED.value
            )

        return FetchResult(
            status_code=page.status_code,
            body=page.html,
            headers=page.headers,
            step=FetchStep.RENDERED,
            duration_ms=(time.monotonic() - start) * 1000,
        )
