"""Session and proxy rotation used when a retailer starts refusing requests."""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from dropwatch.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ProxyInfo:
    """Proxy endpoint parsed from a URL."""

    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_url(cls, url: str) -> "ProxyInfo":
        parsed = urlparse(url)
        return cls(
            host=parsed.hostname or "",
            port=parsed.port or 80,
            username=parsed.username,
            password=parsed.password,
        )

    @property
    def url(self) -> str:
        """Get proxy URL for httpx."""
        if self.username and self.password:
            return f"http://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"http://{self.host}:{self.port}"

    @property
    def playwright_config(self) -> dict:
        """Get proxy config for Playwright."""
        config = {"server": f"http://{self.host}:{self.port}"}
        if self.username:
            config["username"] = self.username
        if self.password:
            config["password"] = self.password
        return config


@dataclass
class RotatedSession:
    """A fresh network identity: new session id and, when configured, a new proxy."""

    session_id: str
    expires_at: float
    proxy: Optional[ProxyInfo] = None

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class ProxyRotator:
    """
    Hands out rotated sessions per adapter.

    Proxies are used round-robin. Without proxies a rotation still yields a
    new session id, which the acquirer turns into a fresh cookie jar or a new
    sticky session at the unlocker gateway.
    """

    def __init__(self, proxy_urls: Optional[list[str]] = None, session_ttl_seconds: Optional[int] = None):
        urls = settings.proxy_urls if proxy_urls is None else proxy_urls
        self._proxies: list[ProxyInfo] = [ProxyInfo.from_url(u) for u in urls]
        self._current_index = 0
        self._ttl = session_ttl_seconds or settings.proxy_session_ttl_seconds
        self._sessions: dict[str, RotatedSession] = {}
        self._lock = asyncio.Lock()
        self.rotations: dict[str, int] = {}

    @property
    def proxy_count(self) -> int:
        return len(self._proxies)

    def current(self, adapter_id: str) -> Optional[RotatedSession]:
        """Live session for an adapter, if any."""
        session = self._sessions.get(adapter_id)
        if session and session.expired:
            self._sessions.pop(adapter_id, None)
            return None
        return session

    async def rotate(self, adapter_id: str) -> RotatedSession:
        """Replace the adapter's session with a new one."""
        async with self._lock:
            proxy = None
            if self._proxies:
                proxy = self._proxies[self._current_index % len(self._proxies)]
                self._current_index += 1
            session = RotatedSession(
                session_id=f"dw_{secrets.token_hex(6)}",
                expires_at=time.monotonic() + self._ttl,
                proxy=proxy,
            )
            self._sessions[adapter_id] = session
            self.rotations[adapter_id] = self.rotations.get(adapter_id, 0) + 1

        logger.info(
            f"Rotated session for {adapter_id} "
            f"(proxy={'yes' if proxy else 'no'}, rotations={self.rotations[adapter_id]})"
        )
        return session


# Global rotator instance
proxy_rotator = ProxyRotator()
