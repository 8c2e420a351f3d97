import enum

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from scrape_governor.database import Base


class SourceStatus(str, enum.Enum):
    OK = "ok"
    HEALING = "healing"
    HEALED = "healed"


class Source(Base):
    __tablename__ = "sources"

    id = Column(String(120), primary_key=True, index=True)
    display_name = Column(String(255), nullable=False)
    region = Column(String(120), nullable=True)
    status = Column(String(20), nullable=False, default=SourceStatus.OK.value, index=True)
    last_scraped_at = Column(DateTime, nullable=True)
    last_heal_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
