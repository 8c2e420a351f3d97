from pydantic import BaseModel
from typing import Any, Optional
from datetime import datetime


class HubStatusResponse(BaseModel):
    hub_id: str
    timezone: str
    business_start_hour: int
    business_end_hour: int
    local_hour: int
    is_open: bool
    proxy_region: Optional[str] = None
    proxy_provider: Optional[str] = None


class RateLimitStatusResponse(BaseModel):
    source_id: str
    remaining: int
    window_reset_ms: int
    is_limited: bool


class TraceSpanResponse(BaseModel):
    name: str
    attributes: dict[str, Any] = {}
    started_at: datetime
    ended_at: Optional[datetime] = None
