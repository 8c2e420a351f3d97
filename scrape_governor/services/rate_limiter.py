"""Per-source request windows to stay within portal terms of use."""

import asyncio
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimitWindow:
    request_count: int = 0
    window_start: float = 0.0
    last_request_time: float = 0.0


@dataclass
class RateLimitDecision:
    allowed: bool
    wait_ms: int = 0
    remaining: int = 0


@dataclass
class RateLimitStatus:
    remaining: int
    window_reset_ms: int
    is_limited: bool


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 12,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: Dict[str, RateLimitWindow] = {}
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, source_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[source_id]

    def check(self, source_id: str) -> RateLimitDecision:
        """Admit and count a request, or deny it with the time left in the window."""
        with self._lock_for(source_id):
            now = self.clock()
            window = self._windows.get(source_id)
            if window is None:
                window = RateLimitWindow(window_start=now)
                self._windows[source_id] = window

            if now - window.window_start >= self.window_seconds:
                window.request_count = 0
                window.window_start = now

            if window.request_count >= self.max_requests:
                wait_s = self.window_seconds - (now - window.window_start)
                return RateLimitDecision(allowed=False, wait_ms=max(0, int(wait_s * 1000) + 1), remaining=0)

            window.request_count += 1
            window.last_request_time = now
            return RateLimitDecision(allowed=True, remaining=self.max_requests - window.request_count)

    async def wait_for_slot(
        self,
        source_id: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> RateLimitDecision:
        """Wait out a denial once, then retry once. No unbounded retry loop."""
        decision = self.check(source_id)
        if decision.allowed or not decision.wait_ms:
            return decision
        logger.info(f"Rate limit reached for {source_id}; waiting {decision.wait_ms}ms")
        await sleep(decision.wait_ms / 1000)
        return self.check(source_id)

    def status(self, source_id: str) -> RateLimitStatus:
        with self._lock_for(source_id):
            window = self._windows.get(source_id)
            if window is None:
                return RateLimitStatus(
                    remaining=self.max_requests,
                    window_reset_ms=int(self.window_seconds * 1000),
                    is_limited=False,
                )
            elapsed = self.clock() - window.window_start
            if elapsed >= self.window_seconds:
                return RateLimitStatus(
                    remaining=self.max_requests,
                    window_reset_ms=int(self.window_seconds * 1000),
                    is_limited=False,
                )
            remaining = max(0, self.max_requests - window.request_count)
            return RateLimitStatus(
                remaining=remaining,
                window_reset_ms=max(0, int((self.window_seconds - elapsed) * 1000)),
                is_limited=remaining == 0,
            )

    def reset(self, source_id: Optional[str] = None) -> None:
        if source_id is None:
            with self._locks_guard:
                locks = list(self._locks.values())
            for lock in locks:
                lock.acquire()
            try:
                self._windows.clear()
            finally:
                for lock in locks:
                    lock.release()
            return
        with self._lock_for(source_id):
            self._windows.pop(source_id, None)


_default_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter; windows are shared by every hub task in this process."""
    global _default_limiter
    if _default_limiter is None:
        from scrape_governor.config import settings

        _default_limiter = RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _default_limiter
