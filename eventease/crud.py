"""CRUD helpers for users and events."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import hash_password, verify_password
from .errors import InvalidCredentials, InvalidInput, UserExists
from .models import CUSTOM_FIELD_TYPES, RSVP, USER_ROLES, Event, User
from .utils import parse_datetime, utcnow

# Keys a partial update may touch; everything else in the body is ignored.
UPDATABLE_EVENT_FIELDS = {
    "title",
    "description",
    "location",
    "start_date",
    "end_date",
    "is_public",
    "max_attendees",
    "custom_fields",
}


def _now() -> datetime:
    return utcnow()


def get_user_by_email(session: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == email)
    return session.scalars(stmt).first()


def create_user(
    session: Session,
    *,
    email: str | None,
    password: str | None,
    name: str | None = None,
    role: str = "EVENT_OWNER",
) -> User:
    """Register a user; emails are unique exactly as typed."""
    if not email or not password:
        raise InvalidInput("Email and password are required")
    if role not in USER_ROLES:
        raise InvalidInput("Invalid role")
    if get_user_by_email(session, email):
        raise UserExists()
    user = User(
        email=email,
        name=name or None,
        password_hash=hash_password(password),
        role=role,
        created_at=_now(),
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise UserExists() from exc
    return user


def authenticate_user(
    session: Session, *, email: str | None, password: str | None
) -> User:
    if not email or not password:
        raise InvalidInput("Email and password are required")
    user = get_user_by_email(session, email)
    if not user or not verify_password(user.password_hash, password):
        raise InvalidCredentials()
    return user


def set_user_role(session: Session, *, email: str, role: str) -> User:
    normalized = (role or "").strip().upper()
    if normalized not in USER_ROLES:
        raise InvalidInput(f"Role must be one of {', '.join(USER_ROLES)}")
    user = get_user_by_email(session, email)
    if not user:
        raise InvalidInput("User not found")
    user.role = normalized
    session.add(user)
    session.flush()
    return user


def normalize_max_attendees(raw: Any) -> int | None:
    """Accept ints or numeric strings; empty means unlimited."""
    if raw is None:
        return None
    if isinstance(raw, str) and not raw.strip():
        return None
    if isinstance(raw, bool):
        raise InvalidInput("Maximum attendees must be a positive number")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput("Maximum attendees must be a positive number") from exc
    if value != raw and not isinstance(raw, str):
        # e.g. 2.5
        raise InvalidInput("Maximum attendees must be a positive number")
    if value < 1:
        raise InvalidInput("Maximum attendees must be a positive number")
    return value


def normalize_custom_fields(raw: Any) -> list[dict] | None:
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise InvalidInput("Custom fields must be a list")
    fields: list[dict] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            raise InvalidInput("Each custom field must be an object")
        field_id = str(item.get("id") or "").strip()
        label = str(item.get("label") or "").strip()
        field_type = item.get("type")
        if not field_id or not label:
            raise InvalidInput("Custom fields need an id and a label")
        if field_id in seen:
            raise InvalidInput(f"Duplicate custom field id: {field_id}")
        if field_type not in CUSTOM_FIELD_TYPES:
            raise InvalidInput(
                f"Custom field type must be one of {', '.join(CUSTOM_FIELD_TYPES)}"
            )
        required = item.get("required")
        if required is None:
            required = False
        if not isinstance(required, bool):
            raise InvalidInput("Custom field 'required' must be true or false")
        seen.add(field_id)
        fields.append(
            {
                "id": field_id,
                "label": label,
                "type": field_type,
                "required": required,
            }
        )
    return fields


def _parse_event_date(raw: Any) -> datetime:
    try:
        return parse_datetime(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput("Invalid date format") from exc


def create_event(
    session: Session,
    *,
    creator: User,
    title: str | None,
    location: str | None,
    start_date: str | datetime | None,
    description: str | None = None,
    end_date: str | datetime | None = None,
    is_public: bool = True,
    max_attendees: Any = None,
    custom_fields: Any = None,
    now: datetime | None = None,
) -> Event:
    """Validate and persist a new event owned by ``creator``."""
    if not title or not location or not start_date:
        raise InvalidInput("Title, location, and start date are required")
    normalized_start = _parse_event_date(start_date)
    normalized_end = _parse_event_date(end_date) if end_date else None
    if normalized_start <= (now or _now()):
        raise InvalidInput("Start date must be in the future")
    if normalized_end is not None and normalized_end <= normalized_start:
        raise InvalidInput("End date must be after start date")

    event = Event(
        creator=creator,
        title=title,
        description=description,
        location=location,
        start_date=normalized_start,
        end_date=normalized_end,
        is_public=bool(is_public),
        max_attendees=normalize_max_attendees(max_attendees),
        custom_fields=normalize_custom_fields(custom_fields),
        views=0,
    )
    session.add(event)
    session.flush()
    return event


def update_event(session: Session, event: Event, changes: dict[str, Any]) -> Event:
    """Apply a partial update; start dates in the past are allowed here."""
    updates = {k: v for k, v in changes.items() if k in UPDATABLE_EVENT_FIELDS}
    if "title" in updates and not updates["title"]:
        raise InvalidInput("Title cannot be empty")
    if "location" in updates and not updates["location"]:
        raise InvalidInput("Location cannot be empty")
    if "start_date" in updates:
        if not updates["start_date"]:
            raise InvalidInput("Start date cannot be empty")
        updates["start_date"] = _parse_event_date(updates["start_date"])
    if "end_date" in updates:
        raw_end = updates["end_date"]
        updates["end_date"] = _parse_event_date(raw_end) if raw_end else None
    if "max_attendees" in updates:
        updates["max_attendees"] = normalize_max_attendees(updates["max_attendees"])
    if "custom_fields" in updates:
        updates["custom_fields"] = normalize_custom_fields(updates["custom_fields"])
    # null visibility leaves the event as it was
    if "is_public" in updates and updates["is_public"] is None:
        del updates["is_public"]
    if "is_public" in updates:
        updates["is_public"] = bool(updates["is_public"])

    start = updates.get("start_date", event.start_date)
    end = updates.get("end_date", event.end_date)
    if end is not None and end <= start:
        raise InvalidInput("End date must be after start date")

    for field, value in updates.items():
        setattr(event, field, value)
    event.updated_at = _now()
    session.add(event)
    session.flush()
    return event


def delete_event(session: Session, event: Event) -> None:
    session.delete(event)
    session.flush()


def list_events_for_creator(session: Session, creator_id: str) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.creator_id == creator_id)
        .order_by(Event.created_at.desc())
    )
    return session.scalars(stmt).all()


def rsvp_counts(session: Session, event_ids: Sequence[str]) -> dict[str, int]:
    """Return total RSVP rows per event id."""
    if not event_ids:
        return {}
    stmt = (
        select(RSVP.event_id, func.count(RSVP.id))
        .where(RSVP.event_id.in_(event_ids))
        .group_by(RSVP.event_id)
    )
    counts = {event_id: 0 for event_id in event_ids}
    for event_id, count in session.execute(stmt).all():
        counts[event_id] = count
    return counts


def increment_views(session: Session, event_id: str) -> None:
    session.execute(
        update(Event).where(Event.id == event_id).values(views=Event.views + 1)
    )
