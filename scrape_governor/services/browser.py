from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from scrape_governor.config import settings

logger = logging.getLogger(__name__)

# Stealth script to avoid bot detection
STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
window.chrome = {runtime: {}};
const originalQuery = window.navigator.permissions && window.navigator.permissions.query;
if (originalQuery) {
  window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications'
      ? Promise.resolve({state: Notification.permission})
      : originalQuery(parameters)
  );
}
"""

LAUNCH_ARGS = ["--disable-blink-features=AutomationControlled"]


class BrowserDriver(Protocol):
    """The narrow slice of a browser page the governor is allowed to touch."""

    async def goto(self, url: str) -> None: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def mouse_move(self, x: float, y: float) -> None: ...

    async def mouse_down(self) -> None: ...

    async def mouse_up(self) -> None: ...

    async def content(self) -> str: ...

    def url(self) -> str: ...

    async def screenshot(self) -> bytes: ...

    async def query_text(self, selector: str) -> Optional[str]: ...

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None: ...

    async def cookies(self) -> List[Dict[str, Any]]: ...


class PlaywrightDriver:
    """BrowserDriver over a Playwright async Page."""

    def __init__(self, page, navigation_timeout_ms: int = 60000):
        self.page = page
        self.navigation_timeout_ms = navigation_timeout_ms

    async def goto(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self.page.evaluate(script)
        return await self.page.evaluate(script, arg)

    async def mouse_move(self, x: float, y: float) -> None:
        await self.page.mouse.move(x, y)

    async def mouse_down(self) -> None:
        await self.page.mouse.down()

    async def mouse_up(self) -> None:
        await self.page.mouse.up()

    async def content(self) -> str:
        return await self.page.content()

    def url(self) -> str:
        return self.page.url

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(full_page=False)

    async def query_text(self, selector: str) -> Optional[str]:
        """Text of the first match; None if nothing matches or the selector is invalid."""
        try:
            element = await self.page.query_selector(selector)
        except Exception as e:
            logger.warning(f"Selector {selector!r} could not be evaluated: {e}")
            return None
        if element is None:
            return None
        text = await element.inner_text()
        return (text or "").strip()

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        await self.page.context.add_cookies(cookies)

    async def cookies(self) -> List[Dict[str, Any]]:
        return await self.page.context.cookies()


@dataclass
class BrowserIdentity:
    user_agent: str
    proxy: Optional[Dict[str, str]] = None
    use_camoufox: bool = False


@dataclass
class LaunchedBrowser:
    driver: BrowserDriver
    identity: BrowserIdentity
    close: Callable[[], Awaitable[None]] = field(repr=False)


class BrowserLauncher(Protocol):
    async def launch(self, identity: BrowserIdentity) -> LaunchedBrowser: ...


class PlaywrightLauncher:
    """Launches Chromium (or a Camoufox build) per identity with stealth evasions applied."""

    def __init__(self, playwright, headless: bool = None, camoufox_path: Optional[str] = None):
        self.playwright = playwright
        self.headless = settings.browser_headless if headless is None else headless
        self.camoufox_path = camoufox_path or settings.camoufox_executable_path

    def _launch_options(self, identity: BrowserIdentity) -> Dict[str, Any]:
        options: Dict[str, Any] = {"headless": self.headless, "args": list(LAUNCH_ARGS)}
        if identity.proxy:
            options["proxy"] = identity.proxy
        if identity.use_camoufox:
            if self.camoufox_path:
                options["executable_path"] = self.camoufox_path
            else:
                logger.warning("Camoufox requested but no executable configured; using bundled Chromium")
        return options

    async def launch(self, identity: BrowserIdentity) -> LaunchedBrowser:
        browser = await self.playwright.chromium.launch(**self._launch_options(identity))
        context = await browser.new_context(
            user_agent=identity.user_agent,
            viewport={"width": 1280, "height": 800},
        )
        await context.add_init_script(STEALTH_SCRIPT)
        page = await context.new_page()

        async def close() -> None:
            try:
                await context.close()
            finally:
                await browser.close()

        return LaunchedBrowser(driver=PlaywrightDriver(page), identity=identity, close=close)
