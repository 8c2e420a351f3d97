"""
Human-flow protocol: before opening a job URL, browse like a person would.

1. Land on the home page
2. Scroll down ~30% at a variable pace
3. Move the pointer onto the top navigation and linger ~1.2s
4. Navigate to the target URL
"""

import logging
import random
from typing import Awaitable, Callable, Optional

from scrape_governor.services.human_mouse import HumanMouse
from scrape_governor.utils.humanize import Rhythm

logger = logging.getLogger(__name__)

SCROLL_FRACTION = 0.3
SCROLL_STEPS_MIN = 8
SCROLL_STEPS_MAX = 14
HOVER_DWELL_MS = 1200

SCROLL_HEIGHT_JS = "() => document.documentElement.scrollHeight - window.innerHeight"
SCROLL_TO_JS = "(y) => window.scrollTo(0, y)"
VIEWPORT_JS = "() => ({w: window.innerWidth, h: window.innerHeight})"

NavigationHook = Callable[[object], Awaitable[None]]


class BehaviorProtocol:
    def __init__(
        self,
        rhythm: Rhythm = None,
        mouse: HumanMouse = None,
        after_navigation: Optional[NavigationHook] = None,
    ):
        self.rhythm = rhythm or Rhythm()
        self.mouse = mouse or HumanMouse(self.rhythm)
        self.after_navigation = after_navigation

    async def _navigate(self, driver, url: str) -> None:
        await driver.goto(url)
        if self.after_navigation is not None:
            await self.after_navigation(driver)

    async def scroll_fraction(self, driver, fraction: float = SCROLL_FRACTION) -> int:
        scroll_height = await driver.evaluate(SCROLL_HEIGHT_JS) or 0
        target = round(max(0, scroll_height) * fraction)
        steps = random.randint(SCROLL_STEPS_MIN, SCROLL_STEPS_MAX)
        for i in range(1, steps + 1):
            await driver.evaluate(SCROLL_TO_JS, round(target * i / steps))
            await self.rhythm.wait_jitter(80, 400)
        return steps

    async def nav_band_point(self, driver) -> tuple[float, float]:
        """Random point in the page's top navigation band."""
        size = await driver.evaluate(VIEWPORT_JS)
        width = size["w"]
        return (random.random() * width * 0.3 + width * 0.1, random.random() * 80 + 20)

    async def run_flow(self, driver, home_url: str, target_url: str) -> None:
        """home -> scroll 30% -> hover ~1.2s -> target. Navigation errors propagate."""
        logger.info(f"Human flow: {home_url} -> {target_url}")
        await self._navigate(driver, home_url)
        await self.rhythm.wait_jitter()

        await self.scroll_fraction(driver)
        await self.rhythm.wait_jitter(500, 1500)

        x, y = await self.nav_band_point(driver)
        await self.mouse.move_to(driver, x, y)
        await self.rhythm.pause(HOVER_DWELL_MS)

        await self.rhythm.wait_hesitate()
        await self._navigate(driver, target_url)
        await self.rhythm.wait_jitter()
