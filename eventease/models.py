"""SQLAlchemy models for EventEase."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

USER_ROLES = ("ADMIN", "STAFF", "EVENT_OWNER")
PRIVILEGED_ROLES = frozenset({"ADMIN", "STAFF"})
RSVP_STATUSES = ("PENDING", "CONFIRMED", "CANCELLED")
CUSTOM_FIELD_TYPES = ("text", "email", "number", "textarea")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(120), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default="EVENT_OWNER")
    created_at = Column(DateTime, default=_now, nullable=False)

    events = relationship(
        "Event", back_populates="creator", cascade="all, delete-orphan"
    )


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    is_public = Column(Boolean, default=True, nullable=False)
    max_attendees = Column(Integer, nullable=True)
    custom_fields = Column(JSON, nullable=True)
    views = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    creator = relationship("User", back_populates="events")
    rsvps = relationship(
        "RSVP",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="RSVP.created_at",
    )


class RSVP(Base):
    __tablename__ = "rsvps"
    __table_args__ = (
        UniqueConstraint("event_id", "email", name="uq_rsvps_event_email"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(64), nullable=True)
    message = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="CONFIRMED")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="rsvps")
