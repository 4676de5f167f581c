"""SQLAlchemy models for Invitely."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class AttendanceStatus(str, enum.Enum):
    GOING = "going"
    INTERESTED = "interested"
    NOT_GOING = "not_going"


ATTENDANCE_STATUSES = tuple(status.value for status in AttendanceStatus)


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    cover_image = Column(String(512), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    location = Column(String(255), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False)

    rsvps = relationship("RSVP", back_populates="event", passive_deletes=True)
    invitations = relationship(
        "Invitation", back_populates="event", passive_deletes=True
    )


class RSVP(Base):
    __tablename__ = "rsvps"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=False)
    status = Column(String(16), nullable=False, default=AttendanceStatus.GOING.value)
    hide_from_guest_list = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="rsvps")


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email = Column(String(320), nullable=False)
    invite_code = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="invitations")
