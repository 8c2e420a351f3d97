"""Human-like timing.

Fixed intervals are the easiest bot signature to spot, so every wait is drawn
from a bell curve centred on the middle of its window and clamped to it.
"""

import asyncio
import math
import random
from typing import Awaitable, Callable, Optional

JITTER_MS_MIN = 1200
JITTER_MS_MAX = 4500
HESITATE_MS_MIN = 200
HESITATE_MS_MAX = 1000
CLICK_GAP_MS_MIN = 80
CLICK_GAP_MS_MAX = 150


def gaussian() -> float:
    """Standard normal sample via the Box-Muller transform."""
    u = 0.0
    v = 0.0
    while u == 0.0:
        u = random.random()
    while v == 0.0:
        v = random.random()
    return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)


def jitter_delay_ms(
    min_ms: int = JITTER_MS_MIN,
    max_ms: int = JITTER_MS_MAX,
    mean_ms: Optional[float] = None,
) -> int:
    """Gaussian delay clamped to [min_ms, max_ms]; std dev is a quarter of the range."""
    if min_ms > max_ms:
        raise ValueError(f"min_ms ({min_ms}) must not exceed max_ms ({max_ms})")
    mean = mean_ms if mean_ms is not None else (min_ms + max_ms) / 2
    std_dev = (max_ms - min_ms) / 4
    ms = round(mean + gaussian() * std_dev)
    return int(max(min_ms, min(max_ms, ms)))


def hesitate_delay_ms() -> int:
    """Reading/hesitation pause before acting (200-1000ms)."""
    return round(random.random() * (HESITATE_MS_MAX - HESITATE_MS_MIN) + HESITATE_MS_MIN)


def click_gap_ms() -> int:
    """Gap between mouse down and up (80-150ms)."""
    return round(random.random() * (CLICK_GAP_MS_MAX - CLICK_GAP_MS_MIN) + CLICK_GAP_MS_MIN)


class Rhythm:
    """Async waits built on the delay samplers. Each wait returns the milliseconds slept."""

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        min_ms: int = JITTER_MS_MIN,
        max_ms: int = JITTER_MS_MAX,
    ):
        self._sleep = sleep
        self.min_ms = min_ms
        self.max_ms = max_ms

    async def pause(self, ms: float) -> float:
        await self._sleep(ms / 1000)
        return ms

    async def wait_jitter(self, min_ms: int = None, max_ms: int = None) -> int:
        ms = jitter_delay_ms(
            min_ms if min_ms is not None else self.min_ms,
            max_ms if max_ms is not None else self.max_ms,
        )
        await self.pause(ms)
        return ms

    async def wait_hesitate(self) -> int:
        ms = hesitate_delay_ms()
        await self.pause(ms)
        return ms

    async def wait_click_gap(self) -> int:
        ms = click_gap_ms()
        await self.pause(ms)
        return ms


def get_rhythm() -> Rhythm:
    from scrape_governor.config import settings

    return Rhythm(min_ms=settings.jitter_min_ms, max_ms=settings.jitter_max_ms)
