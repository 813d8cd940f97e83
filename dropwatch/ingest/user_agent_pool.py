"""Stable browser identities per adapter.

Each adapter presents the same identity for its whole lifetime so a
retailer sees one consistent client rather than a new browser per request.
The identity is picked deterministically from a small pool by hashing the
adapter id.
"""

import hashlib
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrowserIdentity:
    """User agent plus the headers that must agree with it."""
    user_agent: str
    browser: str  # 'chrome', 'firefox', 'safari', 'edge'
    platform: str  # 'windows', 'mac'
    viewport: tuple[int, int] = (1366, 768)
    client_hints: dict = field(default_factory=dict, hash=False, compare=False)

    def headers(self) -> dict[str, str]:
        """Default request headers matching this identity."""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate, br",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
        }
        headers.update(self.client_hints)
        return headers


def _chromium_hints(brand: str, version: int, platform: str) -> dict:
    return {
        "Sec-Ch-Ua": f'"Not_A Brand";v="8", "Chromium";v="{version}", "{brand}";v="{version}"',
        "Sec-Ch-Ua-Mobile": "?0",
        "Sec-Ch-Ua-Platform": '"Windows"' if platform == "windows" else '"macOS"',
    }


class UserAgentPool:
    """Fixed pool of realistic desktop identities."""

    def __init__(self):
        self._identities: list[BrowserIdentity] = []
        self._generate_pool()

    def _generate_pool(self):
        for version in (122, 124, 126):
            self._identities.append(BrowserIdentity(
                user_agent=(
                    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                    f"(KHTML, like Gecko) Chrome/{version}.0.0.0 Safari/537.36"
                ),
                browser="chrome",
                platform="windows",
                viewport=(1920, 1080),
                client_hints=_chromium_hints("Google Chrome", version, "windows"),
            ))
            self._identities.append(BrowserIdentity(
                user_agent=(
                    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
                    f"(KHTML, like Gecko) Chrome/{version}.0.0.0 Safari/537.36"
                ),
                browser="chrome",
                platform="mac",
                viewport=(1440, 900),
                client_hints=_chromium_hints("Google Chrome", version, "mac"),
            ))
            self._identities.append(BrowserIdentity(
                user_agent=(
                    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                    f"(KHTML, like Gecko) Chrome/{version}.0.0.0 Safari/537.36 Edg/{version}.0.0.0"
                ),
                browser="edge",
                platform="windows",
                viewport=(1536, 864),
                client_hints=_chromium_hints("Microsoft Edge", version, "windows"),
            ))
        for version in (124, 126):
            self._identities.append(BrowserIdentity(
                user_agent=(
                    f"Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:{version}.0) "
                    f"Gecko/20100101 Firefox/{version}.0"
                ),
                browser="firefox",
                platform="windows",
            ))
        self._identities.append(BrowserIdentity(
            user_agent=(
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
                "(KHTML, like Gecko) Version/17.4 Safari/605.1.15"
            ),
            browser="safari",
            platform="mac",
            viewport=(1440, 900),
        ))

    def __len__(self) -> int:
        return len(self._identities)

    def identity_for(self, adapter_id: str) -> BrowserIdentity:
        """Deterministic identity for an adapter id."""
        digest = hashlib.sha1(adapter_id.encode()).hexdigest()
        return self._identities[int(digest[:8], 16) % len(self._identities)]


# Global pool instance
user_agent_pool = UserAgentPool()
