from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class SourceResponse(BaseModel):
    id: str
    display_name: str
    region: Optional[str] = None
    status: str
    last_scraped_at: Optional[datetime] = None
    last_heal_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SelectorResponse(BaseModel):
    source_id: str
    field_name: str
    selector_type: str
    selector_value: str
    selector_previous: Optional[str] = None
    last_verified_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HealEventResponse(BaseModel):
    id: int
    source_id: str
    field_name: str
    trigger_reason: str
    selector_before: Optional[str] = None
    selector_after: Optional[str] = None
    success: bool
    trace_id: Optional[str] = None
    raw_error: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
