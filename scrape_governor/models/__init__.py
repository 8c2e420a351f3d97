from scrape_governor.models.source import Source, SourceStatus
from scrape_governor.models.selector import Selector
from scrape_governor.models.heal_event import HealEvent
from scrape_governor.models.browser_session import BrowserSession
from scrape_governor.models.regional_profile import RegionalProfile
from scrape_governor.models.enrichment_cache import EnrichmentCacheEntry

__all__ = [
    "Source",
    "SourceStatus",
    "Selector",
    "HealEvent",
    "BrowserSession",
    "RegionalProfile",
    "EnrichmentCacheEntry",
]
