from scrape_governor.services.llm_client import LLMClient, get_llm_client
from scrape_governor.services.business_hours import BusinessHoursGate
from scrape_governor.services.fail_safe import FailSafeMonitor, detect_block
from scrape_governor.services.human_flow import BehaviorProtocol
from scrape_governor.services.session_vault import SessionVault
from scrape_governor.services.rate_limiter import RateLimiter
from scrape_governor.services.circuit_breaker import CircuitBreakerRegistry
from scrape_governor.services.enrichment import FallbackChain
from scrape_governor.services.bot_score import BotScoreClient, DefenseRotationController
from scrape_governor.services.selector_store import SelectorStore
from scrape_governor.services.self_healing import SelfHealingEngine, SelectorHealer
from scrape_governor.services.hub_runner import HubSessionRunner

__all__ = [
    "LLMClient",
    "get_llm_client",
    "BusinessHoursGate",
    "FailSafeMonitor",
    "detect_block",
    "BehaviorProtocol",
    "SessionVault",
    "RateLimiter",
    "CircuitBreakerRegistry",
    "FallbackChain",
    "BotScoreClient",
    "DefenseRotationController",
    "SelectorStore",
    "SelfHealingEngine",
    "SelectorHealer",
    "HubSessionRunner",
]
