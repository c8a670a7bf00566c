"""SiteSetting model for singleton JSON configuration records."""

from sqlalchemy import Column, DateTime, JSON, String
from sqlalchemy.sql import func

from database import Base


class SiteSetting(Base):
    """Keyed JSON configuration value, overwritten in place."""

    __tablename__ = "site_settings"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
