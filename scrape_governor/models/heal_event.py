from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean
from sqlalchemy.sql import func

from scrape_governor.database import Base


class HealEvent(Base):
    """Append-only audit row, one per heal attempt."""

    __tablename__ = "heal_events"

    id = Column(Integer, primary_key=True, index=True)
    source_id = Column(String(120), nullable=False, index=True)
    field_name = Column(String(120), nullable=False, index=True)
    trigger_reason = Column(String(40), nullable=False)  # null_field | selector_not_found | http_403 | http_404 | timeout
    selector_before = Column(Text, nullable=True)
    selector_after = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    trace_id = Column(String(64), nullable=True)
    raw_error = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)
