"""
Business-hours gate.

Hubs are only scraped during their local working day so the traffic looks like
a researcher at a desk, not an always-on bot. The window is [start, end).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Set
from zoneinfo import ZoneInfo

from scrape_governor.config import settings
from scrape_governor.errors import OutOfWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HubProfile:
    hub_id: str
    timezone: str
    business_start_hour: int = 9
    business_end_hour: int = 18
    proxy_region: Optional[str] = None
    proxy_provider: Optional[str] = None


DEFAULT_HUB_PROFILES: Dict[str, HubProfile] = {
    p.hub_id: p
    for p in (
        HubProfile("Singapore", "Asia/Singapore", proxy_region="StarHub/Singtel"),
        HubProfile("Vietnam", "Asia/Ho_Chi_Minh"),
        HubProfile("Hong Kong", "Asia/Hong_Kong", proxy_region="HKBN/PCCW"),
        HubProfile("Dubai", "Asia/Dubai", proxy_region="Etisalat/du"),
        HubProfile("Riyadh", "Asia/Riyadh", proxy_region="STC/Mobily"),
        HubProfile("Abu Dhabi", "Asia/Dubai", proxy_region="Etisalat/du"),
        HubProfile("Mumbai", "Asia/Kolkata", proxy_region="Airtel/Jio"),
        HubProfile("Bangalore", "Asia/Kolkata", proxy_region="Airtel/Jio"),
    )
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BusinessHoursGate:
    def __init__(
        self,
        profiles: Optional[Iterable[HubProfile]] = None,
        clock: Callable[[], datetime] = _utc_now,
        default_start_hour: int = None,
        default_end_hour: int = None,
    ):
        self.default_start_hour = settings.business_start_hour if default_start_hour is None else default_start_hour
        self.default_end_hour = settings.business_end_hour if default_end_hour is None else default_end_hour
        if profiles is None:
            profiles = [
                replace(p, business_start_hour=self.default_start_hour, business_end_hour=self.default_end_hour)
                for p in DEFAULT_HUB_PROFILES.values()
            ]
        self._profiles: Dict[str, HubProfile] = {p.hub_id: p for p in profiles}
        self._clock = clock

    @property
    def hubs(self) -> list[str]:
        return list(self._profiles)

    def profile(self, hub_id: str) -> HubProfile:
        profile = self._profiles.get(hub_id)
        if profile is None:
            return HubProfile(
                hub_id=hub_id,
                timezone="UTC",
                business_start_hour=self.default_start_hour,
                business_end_hour=self.default_end_hour,
            )
        return profile

    def local_hour(self, hub_id: str) -> int:
        profile = self.profile(hub_id)
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(ZoneInfo(profile.timezone)).hour

    def is_open(self, hub_id: str) -> bool:
        profile = self.profile(hub_id)
        hour = self.local_hour(hub_id)
        return profile.business_start_hour <= hour < profile.business_end_hour

    def currently_open_hubs(self) -> Set[str]:
        return {hub_id for hub_id in self._profiles if self.is_open(hub_id)}

    def assert_open(self, hub_id: str) -> None:
        if not self.is_open(hub_id):
            profile = self.profile(hub_id)
            raise OutOfWindow(
                hub_id,
                profile.timezone,
                self.local_hour(hub_id),
                profile.business_start_hour,
                profile.business_end_hour,
            )

    def refresh(self, db) -> int:
        """Overlay profiles stored in regional_profiles; hubs without a row keep their defaults."""
        from scrape_governor.models import RegionalProfile

        try:
            rows = db.query(RegionalProfile).all()
        except Exception as e:
            logger.error(f"Failed to load regional profiles, keeping current ones: {e}")
            return 0

        for row in rows:
            current = self._profiles.get(row.hub_id)
            self._profiles[row.hub_id] = HubProfile(
                hub_id=row.hub_id,
                timezone=row.timezone_iana,
                business_start_hour=row.business_start_hour if row.business_start_hour is not None else self.default_start_hour,
                business_end_hour=row.business_end_hour if row.business_end_hour is not None else self.default_end_hour,
                proxy_region=row.proxy_region or (current.proxy_region if current else None),
                proxy_provider=row.proxy_provider,
            )
        logger.info(f"Loaded {len(rows)} regional profiles")
        return len(rows)
