"""UiPreference ORM model: per-user UI state that survives reloads.

Holds what the browser front end used to keep in localStorage: the last
calendar tab and a cached role used when the user lookup fails.
"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from labcalendar.database import Base


class UiPreference(Base):
    __tablename__ = "ui_preferences"

    user_id = Column(String(64), primary_key=True)
    # Stored raw; parsing and fallback happen in preference_service.
    calendar_tab_value = Column(String(16), nullable=True)
    user_role = Column(String(32), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
