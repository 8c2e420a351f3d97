from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from scrape_governor.database import Base


class EnrichmentCacheEntry(Base):
    __tablename__ = "enrichment_cache"
    __table_args__ = (UniqueConstraint("name", "company", name="uq_enrichment_name_company"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    company = Column(String(255), nullable=False, index=True)
    value = Column(Text, nullable=False)
    provider = Column(String(60), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
