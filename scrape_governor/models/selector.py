from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from scrape_governor.database import Base


class Selector(Base):
    __tablename__ = "selectors"
    __table_args__ = (UniqueConstraint("source_id", "field_name", name="uq_selector_source_field"),)

    id = Column(Integer, primary_key=True, index=True)
    source_id = Column(String(120), ForeignKey("sources.id"), nullable=False, index=True)
    field_name = Column(String(120), nullable=False)
    selector_type = Column(String(20), nullable=False, default="css")
    selector_value = Column(Text, nullable=False)
    selector_previous = Column(Text, nullable=True)  # value active right before the last heal
    last_verified_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
