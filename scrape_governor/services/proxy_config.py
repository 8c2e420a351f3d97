"""Proxy endpoints per hub (Zyte / Bright Data style) and the user-agent rotation pool."""

import random
from typing import Dict, Optional

from scrape_governor.config import settings

ROTATION_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

# TLS/JA3 fingerprinting on KSA/SG bank portals
CAMOUFOX_HUBS = {"Riyadh", "Singapore"}


def rotated_user_agent(exclude: Optional[str] = None) -> str:
    pool = [ua for ua in ROTATION_USER_AGENTS if ua != exclude] or ROTATION_USER_AGENTS
    return random.choice(pool)


class ProxyPool:
    def __init__(
        self,
        default: Optional[str] = None,
        alt_default: Optional[str] = None,
        hub_proxies: Optional[Dict[str, str]] = None,
        hub_alt_proxies: Optional[Dict[str, str]] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        force_camoufox: bool = False,
    ):
        self.default = default
        self.alt_default = alt_default
        self.hub_proxies = hub_proxies or {}
        self.hub_alt_proxies = hub_alt_proxies or {}
        self.username = username
        self.password = password
        self.force_camoufox = force_camoufox

    def _playwright_proxy(self, server: Optional[str]) -> Optional[Dict[str, str]]:
        if not server:
            return None
        proxy = {"server": server}
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy

    def proxy_for_hub(self, hub_id: str) -> Optional[Dict[str, str]]:
        return self._playwright_proxy(self.hub_proxies.get(hub_id) or self.default)

    def rotated_proxy_for_hub(self, hub_id: str) -> Optional[Dict[str, str]]:
        """Alternate endpoint used after a bad bot score; None when no alternate is configured."""
        return self._playwright_proxy(self.hub_alt_proxies.get(hub_id) or self.alt_default)

    def use_camoufox_for_hub(self, hub_id: str) -> bool:
        return self.force_camoufox or hub_id in CAMOUFOX_HUBS


def get_proxy_pool() -> ProxyPool:
    return ProxyPool(
        default=settings.proxy_default,
        alt_default=settings.proxy_alt_default,
        hub_proxies=settings.hub_proxies,
        hub_alt_proxies=settings.hub_alt_proxies,
        username=settings.proxy_username,
        password=settings.proxy_password,
        force_camoufox=settings.use_camoufox,
    )
