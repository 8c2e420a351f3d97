from typing import Optional


class GovernorError(Exception):
    """Base class for scrape governor errors."""


class HubHaltError(GovernorError):
    """Stops the current hub session. Never retried within the same cycle."""

    def __init__(self, hub_id: str, message: str):
        self.hub_id = hub_id
        super().__init__(message)


class BlockedError(HubHaltError):
    def __init__(self, hub_id: str, reason: str, url: Optional[str] = None):
        self.reason = reason
        self.url = url
        super().__init__(
            hub_id,
            f"[FAIL-SAFE] Halt all scraping for hub {hub_id}. Reason: {reason}. URL: {url or 'unknown'}",
        )


class OutOfWindow(HubHaltError):
    def __init__(self, hub_id: str, timezone: str, local_hour: int, start_hour: int, end_hour: int):
        self.timezone = timezone
        self.local_hour = local_hour
        self.start_hour = start_hour
        self.end_hour = end_hour
        super().__init__(
            hub_id,
            f"{hub_id} ({timezone}) is outside business hours "
            f"{start_hour}:00-{end_hour}:00 (local hour {local_hour}). Abort scrape.",
        )


class InvalidStatusTransition(GovernorError):
    def __init__(self, source_id: str, current: str, target: str):
        self.source_id = source_id
        self.current = current
        self.target = target
        super().__init__(f"Source {source_id}: status change {current} -> {target} is not allowed")


class CookieDecryptError(GovernorError):
    pass
