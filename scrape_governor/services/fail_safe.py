"""
Fail-safe: if a CAPTCHA or "Access Denied" page shows up, stop the whole hub.

Retrying against an active bot defense burns accounts and IPs, so a detected
block is fatal for the hub session; the scheduler decides when to come back.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from scrape_governor.errors import BlockedError
from scrape_governor.services.trace import TraceBuffer

logger = logging.getLogger(__name__)

BLOCK_INDICATORS = (
    "captcha",
    "recaptcha",
    "hcaptcha",
    "access denied",
    "blocked",
    "suspicious activity",
    "unusual traffic",
    "verify you are human",
    "please complete the security check",
    "403 forbidden",
    "rate limit",
)


@dataclass
class BlockCheck:
    blocked: bool
    reason: Optional[str] = None


def detect_block(content: str) -> BlockCheck:
    """Case-insensitive scan of page content for the first block indicator."""
    text = (content or "").lower()
    for phrase in BLOCK_INDICATORS:
        if phrase in text:
            return BlockCheck(blocked=True, reason=phrase)
    return BlockCheck(blocked=False)


class FailSafeMonitor:
    def __init__(self, trace: TraceBuffer):
        self.trace = trace

    async def check(self, driver) -> BlockCheck:
        return detect_block(await driver.content())

    def halt(self, hub_id: str, reason: str, url: Optional[str] = None):
        self.trace.event("fail_safe_halt", hub_id=hub_id, reason=reason, url=url or "")
        logger.error(f"[FAIL-SAFE] Halting hub {hub_id}: {reason} at {url}")
        raise BlockedError(hub_id, reason, url)

    async def assert_not_blocked(self, driver, hub_id: str) -> None:
        """Run after every navigation."""
        result = await self.check(driver)
        if result.blocked:
            self.halt(hub_id, result.reason, driver.url())
