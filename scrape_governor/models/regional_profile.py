from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from scrape_governor.database import Base


class RegionalProfile(Base):
    __tablename__ = "regional_profiles"

    hub_id = Column(String(120), primary_key=True, index=True)
    timezone_iana = Column(String(64), nullable=False)
    proxy_provider = Column(String(120), nullable=True)
    proxy_region = Column(String(120), nullable=True)
    business_start_hour = Column(Integer, nullable=False, default=9)
    business_end_hour = Column(Integer, nullable=False, default=18)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
