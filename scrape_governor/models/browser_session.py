from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from scrape_governor.database import Base


class BrowserSession(Base):
    __tablename__ = "sessions"
    __table_args__ = (UniqueConstraint("hub_id", "source_id", name="uq_session_hub_source"),)

    id = Column(Integer, primary_key=True, index=True)
    hub_id = Column(String(120), nullable=False, index=True)
    source_id = Column(String(120), nullable=False, index=True)
    cookies_encrypted = Column(Text, nullable=False)
    user_agent = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
