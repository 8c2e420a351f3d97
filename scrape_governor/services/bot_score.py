"""
Bot detection check (Fingerprint Server API) and identity rotation.

GET {base}/events/{request_id}; when the bot score is above the threshold the
hub runner drops the browser and relaunches with a rotated proxy and user
agent. Without an API key or request id this layer is a silent no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx

from scrape_governor.services.browser import BrowserIdentity
from scrape_governor.services.proxy_config import ProxyPool, rotated_user_agent

logger = logging.getLogger(__name__)

BOT_SCORE_THRESHOLD_PCT = 10

API_BASES = {
    "us": "https://api.fpjs.io",
    "eu": "https://eu.api.fpjs.io",
}

BOT_RESULT_SCORES = {
    "notDetected": 0,
    "good": 5,
    "bad": 100,
    "bot": 90,
}


@dataclass
class BotScoreResult:
    score_pct: int
    should_rotate: bool
    bot_result: Optional[str] = None
    raw: Any = None


def bot_result_to_score_pct(result: Optional[str]) -> int:
    """Map bot.result to 0-100 (higher = more bot-like). Unknown labels score 50."""
    if not result:
        return 0
    return BOT_RESULT_SCORES.get(result, 50)


def _extract_bot_result(data: Any) -> Optional[str]:
    """products.botd.data.bot.result, tolerating any missing level."""
    node = data
    for key in ("products", "botd", "data", "bot", "result"):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, str) else None


class BotScoreClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        region: str = "us",
        threshold_pct: int = BOT_SCORE_THRESHOLD_PCT,
        timeout: float = 15.0,
        default_request_id: Optional[str] = None,
    ):
        self.api_key = api_key
        self.base_url = API_BASES.get(region, API_BASES["us"])
        self.threshold_pct = threshold_pct
        self.timeout = timeout
        self.default_request_id = default_request_id

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def check_bot_score(self, request_id: Optional[str] = None) -> BotScoreResult:
        if not self.api_key:
            return BotScoreResult(score_pct=0, should_rotate=False, raw="FINGERPRINT_API_KEY not set")

        request_id = request_id or self.default_request_id
        if not request_id:
            return BotScoreResult(score_pct=0, should_rotate=False, raw="No requestId (run Fingerprint agent to get one)")

        try:
            async with self._client() as client:
                resp = await client.get(
                    f"/events/{quote(request_id, safe='')}",
                    headers={"Auth-API-Key": self.api_key},
                )
            if resp.status_code != 200:
                logger.warning(f"Fingerprint API returned HTTP {resp.status_code}")
                return BotScoreResult(score_pct=0, should_rotate=False, raw=resp.text)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Bot score check failed: {e}")
            return BotScoreResult(score_pct=0, should_rotate=False, raw=str(e))

        bot_result = _extract_bot_result(data)
        score = bot_result_to_score_pct(bot_result)
        return BotScoreResult(
            score_pct=score,
            should_rotate=score > self.threshold_pct,
            bot_result=bot_result,
            raw=data,
        )


class DefenseRotationController:
    def __init__(self, bot_score: BotScoreClient, proxy_pool: ProxyPool):
        self.bot_score = bot_score
        self.proxy_pool = proxy_pool

    def initial_identity(self, hub_id: str, user_agent: str) -> BrowserIdentity:
        return BrowserIdentity(
            user_agent=user_agent,
            proxy=self.proxy_pool.proxy_for_hub(hub_id),
            use_camoufox=self.proxy_pool.use_camoufox_for_hub(hub_id),
        )

    async def evaluate(self, request_id: Optional[str]) -> BotScoreResult:
        result = await self.bot_score.check_bot_score(request_id)
        if result.should_rotate:
            logger.warning(f"Bot score {result.score_pct}% ({result.bot_result}) above threshold; rotating identity")
        return result

    def rotation_config(self, hub_id: str, current: Optional[BrowserIdentity] = None) -> BrowserIdentity:
        proxy = self.proxy_pool.rotated_proxy_for_hub(hub_id)
        if proxy is None:
            logger.warning(f"No alternate proxy configured for {hub_id}; rotating user agent only")
            proxy = current.proxy if current else self.proxy_pool.proxy_for_hub(hub_id)
        return BrowserIdentity(
            user_agent=rotated_user_agent(exclude=current.user_agent if current else None),
            proxy=proxy,
            use_camoufox=self.proxy_pool.use_camoufox_for_hub(hub_id),
        )


def get_rotation_controller() -> DefenseRotationController:
    from scrape_governor.config import settings
    from scrape_governor.services.proxy_config import get_proxy_pool

    return DefenseRotationController(
        BotScoreClient(
            api_key=settings.fingerprint_api_key,
            region=settings.fingerprint_api_region,
            threshold_pct=settings.bot_score_threshold_pct,
            default_request_id=settings.fingerprint_last_request_id,
        ),
        get_proxy_pool(),
    )
