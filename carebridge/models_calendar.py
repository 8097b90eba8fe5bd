"""
External Calendar Integration Models
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class CalendarIntegration(Base):
    __tablename__ = "calendar_integrations"
    __table_args__ = (UniqueConstraint("specialist_id", "provider", name="uq_calendar_provider"),)

    id = Column(Integer, primary_key=True, index=True)
    specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=False, index=True)
    provider = Column(String(20), default="google", nullable=False)

    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expires_at = Column(DateTime, nullable=False)

    calendar_id = Column(String(500), nullable=True)

    # Settings
    sync_enabled = Column(Boolean, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    specialist = relationship("Specialist")


class CalendarMirror(Base):
    """External event created for a shift block, so cancellation can remove it"""

    __tablename__ = "calendar_mirrors"

    id = Column(Integer, primary_key=True, index=True)
    shift_assignment_id = Column(
        Integer, ForeignKey("shift_assignments.id"), nullable=False, index=True
    )
    integration_id = Column(Integer, ForeignKey("calendar_integrations.id"), nullable=False)
    external_event_id = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
