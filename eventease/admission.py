"""RSVP admission.

Checks run in a fixed order and the first failure wins, so callers always
see the same error for the same input:

1. name and email present
2. email shape
3. event exists
4. event is public
5. event has not started
6. capacity left
7. no earlier RSVP for this email
8. insert a CONFIRMED RSVP

The insert re-checks capacity in the same statement and relies on the
``(event_id, email)`` unique constraint, so concurrent admissions for one
event can never exceed ``max_attendees`` or duplicate an email. A lost race
rolls back and re-runs the checks a bounded number of times.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text, func, insert, literal, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .errors import (
    DuplicateRSVP,
    EventFull,
    EventNotFound,
    EventNotPublic,
    InvalidAttendee,
    RSVPClosed,
)
from .models import RSVP, Event
from .utils import is_valid_email, utcnow

logger = logging.getLogger("uvicorn.error")

CONFIRMED = "CONFIRMED"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    cleaned = value.strip()
    return cleaned or None


def confirmed_count(session: Session, event_id: str) -> int:
    stmt = select(func.count(RSVP.id)).where(
        RSVP.event_id == event_id, RSVP.status == CONFIRMED
    )
    return session.scalar(stmt) or 0


def _has_rsvp(session: Session, event_id: str, email: str) -> bool:
    stmt = select(RSVP.id).where(RSVP.event_id == event_id, RSVP.email == email)
    return session.scalar(stmt) is not None


def _check_event(session: Session, event_id: str, email: str, now: datetime) -> Event:
    stmt = select(Event).where(Event.id == event_id).with_for_update()
    event = session.scalars(stmt).first()
    if not event:
        raise EventNotFound()
    if not event.is_public:
        raise EventNotPublic()
    if now > event.start_date:
        raise RSVPClosed()
    if (
        event.max_attendees is not None
        and confirmed_count(session, event.id) >= event.max_attendees
    ):
        raise EventFull()
    if _has_rsvp(session, event.id, email):
        raise DuplicateRSVP()
    return event


def _guarded_insert(
    session: Session,
    event: Event,
    *,
    name: str,
    email: str,
    phone: str | None,
    message: str | None,
    now: datetime,
) -> str | None:
    """Insert the RSVP unless the event filled up; return its id or ``None``."""
    rsvp_id = str(uuid.uuid4())
    row = select(
        literal(rsvp_id, String),
        literal(event.id, String),
        literal(name, String),
        literal(email, String),
        literal(phone, String),
        literal(message, Text),
        literal(CONFIRMED, String),
        literal(now, DateTime),
        literal(now, DateTime),
    )
    if event.max_attendees is not None:
        taken = (
            select(func.count(RSVP.id))
            .where(RSVP.event_id == event.id, RSVP.status == CONFIRMED)
            .scalar_subquery()
        )
        row = row.where(taken < event.max_attendees)
    rsvps = RSVP.__table__
    stmt = insert(rsvps).from_select(
        [
            rsvps.c.id,
            rsvps.c.event_id,
            rsvps.c.name,
            rsvps.c.email,
            rsvps.c.phone,
            rsvps.c.message,
            rsvps.c.status,
            rsvps.c.created_at,
            rsvps.c.updated_at,
        ],
        row,
    )
    result = session.execute(stmt)
    if result.rowcount == 0:
        return None
    return rsvp_id


def admit_rsvp(
    session: Session,
    event_id: str,
    *,
    name: str | None,
    email: str | None,
    phone: str | None = None,
    message: str | None = None,
    now: datetime | None = None,
    max_attempts: int | None = None,
) -> RSVP:
    """Admit one attendee to an event and commit, or raise ``AdmissionError``."""
    name = _clean(name)
    email = _clean(email)
    if not name or not email:
        raise InvalidAttendee("Name and email are required")
    if not is_valid_email(email):
        raise InvalidAttendee("Invalid email format")
    phone = _clean(phone)
    message = _clean(message)

    attempts = max(1, max_attempts or settings.admission_attempts)
    lost_to: type[EventFull] | type[DuplicateRSVP] = EventFull
    for attempt in range(1, attempts + 1):
        current = now or utcnow()
        event = _check_event(session, event_id, email, current)
        try:
            rsvp_id = _guarded_insert(
                session,
                event,
                name=name,
                email=email,
                phone=phone,
                message=message,
                now=current,
            )
            if rsvp_id is not None:
                session.commit()
        except IntegrityError:
            session.rollback()
            lost_to = DuplicateRSVP
            logger.warning(
                "RSVP for event %s lost a duplicate race (attempt %d/%d)",
                event_id,
                attempt,
                attempts,
            )
            continue
        if rsvp_id is None:
            session.rollback()
            lost_to = EventFull
            logger.warning(
                "RSVP for event %s lost a capacity race (attempt %d/%d)",
                event_id,
                attempt,
                attempts,
            )
            continue
        rsvp = session.get(RSVP, rsvp_id)
        logger.info("Admitted RSVP %s to event %s", rsvp_id, event_id)
        return rsvp
    raise lost_to()
