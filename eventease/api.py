"""FastAPI application for EventEase."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any
import tomllib

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .admission import admit_rsvp
from .auth import Identity, get_bearer_token, issue_token, resolve_identity
from .config import settings
from .crud import (
    authenticate_user,
    create_event,
    create_user,
    delete_event,
    increment_views,
    list_events_for_creator,
    rsvp_counts,
    update_event,
)
from .database import SessionLocal
from .errors import EventEaseError, Internal, NotFound, Unauthenticated
from .export import attendees_filename, generate_attendee_csv
from .ics import generate_ics
from .models import RSVP, Event, User
from .policy import EventAccessPolicy
from .storage import init_db
from .utils import calendar_filename, isoformat_utc

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

EVENT_NOT_FOUND = "Event not found"

# camelCase body keys accepted by PUT /events/{id}
EVENT_FIELD_NAMES = {
    "title": "title",
    "description": "description",
    "location": "location",
    "startDate": "start_date",
    "endDate": "end_date",
    "isPublic": "is_public",
    "maxAttendees": "max_attendees",
    "customFields": "custom_fields",
}


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventease")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="EventEase", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_policy() -> EventAccessPolicy:
    return EventAccessPolicy.from_settings(settings)


def optional_identity(
    authorization: str | None = Header(None),
    db: Session = Depends(get_db),
) -> Identity | None:
    return resolve_identity(db, authorization)


def require_identity(
    identity: Identity | None = Depends(optional_identity),
) -> Identity:
    if identity is None:
        raise Unauthenticated()
    return identity


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@app.exception_handler(EventEaseError)
async def eventease_error_handler(request: Request, exc: EventEaseError):
    if exc.status_code >= 500:
        logger.error(
            "Request failed on %s %s: %s", request.method, request.url.path, exc.message
        )
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return _error_response(exc.status_code, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(
        "Rejected request body on %s %s: %s",
        request.method,
        request.url.path,
        exc.errors(),
    )
    return _error_response(400, "Invalid request body")


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
    return _error_response(500, Internal.default_message)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return _error_response(500, Internal.default_message)


def _serialize_user(user: User, *, include_created: bool = False):
    payload = {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
    }
    if include_created:
        payload["createdAt"] = isoformat_utc(user.created_at)
    return payload


def _serialize_rsvp(rsvp: RSVP):
    return {
        "id": rsvp.id,
        "name": rsvp.name,
        "email": rsvp.email,
        "phone": rsvp.phone,
        "message": rsvp.message,
        "status": rsvp.status,
        "createdAt": isoformat_utc(rsvp.created_at),
        "updatedAt": isoformat_utc(rsvp.updated_at),
        "eventId": rsvp.event_id,
    }


def _serialize_event(
    event: Event,
    *,
    include_rsvps: bool = False,
    rsvp_count: int | None = None,
):
    payload: dict[str, Any] = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "startDate": isoformat_utc(event.start_date),
        "endDate": isoformat_utc(event.end_date),
        "isPublic": event.is_public,
        "maxAttendees": event.max_attendees,
        "customFields": event.custom_fields,
        "views": event.views,
        "createdAt": isoformat_utc(event.created_at),
        "updatedAt": isoformat_utc(event.updated_at),
        "creatorId": event.creator_id,
        "_count": {
            "rsvps": rsvp_count if rsvp_count is not None else len(event.rsvps)
        },
    }
    if event.creator:
        payload["creator"] = {
            "id": event.creator.id,
            "name": event.creator.name,
            "email": event.creator.email,
        }
    if include_rsvps:
        payload["rsvps"] = [_serialize_rsvp(r) for r in event.rsvps]
    return payload


def _visible_event(
    db: Session, event_id: str, identity: Identity | None, policy: EventAccessPolicy
) -> Event:
    event = db.get(Event, event_id)
    if not event or not policy.can_view(event, identity):
        raise NotFound(EVENT_NOT_FOUND)
    return event


def _mutable_event(
    db: Session, event_id: str, identity: Identity, policy: EventAccessPolicy
) -> Event:
    event = db.get(Event, event_id)
    if not event or not policy.can_mutate(event, identity):
        raise NotFound(EVENT_NOT_FOUND)
    return event


def _count_view(db: Session, event: Event) -> None:
    """Bump the view counter; datastore failures are logged, not raised."""
    try:
        increment_views(db, event.id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not record view for event %s: %s", event.id, exc)


class EventCreatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    startDate: str | None = None
    endDate: str | None = None
    isPublic: bool | None = True
    maxAttendees: int | str | None = None
    customFields: list[Any] | None = None


class EventUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    startDate: str | None = None
    endDate: str | None = None
    isPublic: bool | None = None
    maxAttendees: int | str | None = None
    customFields: list[Any] | None = None


class RSVPCreatePayload(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    message: str | None = None


class SignUpPayload(BaseModel):
    name: str | None = None
    email: str | None = None
    password: str | None = None


class SignInPayload(BaseModel):
    email: str | None = None
    password: str | None = None


@app.get("/health")
def health_check():
    return {"status": "ok"}


# -------- Events --------


@app.post("/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    creator = db.get(User, identity.user_id)
    event = create_event(
        db,
        creator=creator,
        title=payload.title,
        description=payload.description,
        location=payload.location,
        start_date=payload.startDate,
        end_date=payload.endDate,
        is_public=payload.isPublic if payload.isPublic is not None else True,
        max_attendees=payload.maxAttendees,
        custom_fields=payload.customFields,
    )
    logger.info("Created event %s (%s) for user %s", event.id, event.title, creator.id)
    return _serialize_event(event, rsvp_count=0)


@app.get("/events")
def api_list_events(
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    events = list_events_for_creator(db, identity.user_id)
    counts = rsvp_counts(db, [event.id for event in events])
    return [
        _serialize_event(event, rsvp_count=counts.get(event.id, 0)) for event in events
    ]


@app.get("/events/{event_id}")
def api_get_event(
    event_id: str,
    identity: Identity | None = Depends(optional_identity),
    policy: EventAccessPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    event = _visible_event(db, event_id, identity, policy)
    payload = _serialize_event(event, include_rsvps=identity is not None)
    if policy.should_count_view(event, identity):
        _count_view(db, event)
    return payload


@app.get("/events/{event_id}/event.ics")
def api_get_event_ics(
    event_id: str,
    identity: Identity | None = Depends(optional_identity),
    policy: EventAccessPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Serve an event as a downloadable ICS file."""
    event = _visible_event(db, event_id, identity, policy)
    ics_text = generate_ics(event, default_duration=settings.default_event_duration)
    filename = calendar_filename(event.title)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=ics_text, media_type="text/calendar", headers=headers)


@app.get("/events/{event_id}/export")
def api_export_attendees(
    event_id: str,
    identity: Identity = Depends(require_identity),
    policy: EventAccessPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Download the attendee list as CSV; only the owner or staff may."""
    event = _mutable_event(db, event_id, identity, policy)
    filename = attendees_filename(event.id)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    logger.info("Exported %d RSVPs for event %s", len(event.rsvps), event.id)
    return Response(
        content=generate_attendee_csv(event), media_type="text/csv", headers=headers
    )


@app.put("/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    identity: Identity = Depends(require_identity),
    policy: EventAccessPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    event = _mutable_event(db, event_id, identity, policy)
    data = payload.model_dump(exclude_unset=True)
    changes = {EVENT_FIELD_NAMES[key]: value for key, value in data.items()}
    event = update_event(db, event, changes)
    logger.info("Updated event %s by user %s", event.id, identity.user_id)
    return _serialize_event(event)


@app.delete("/events/{event_id}")
def api_delete_event(
    event_id: str,
    identity: Identity = Depends(require_identity),
    policy: EventAccessPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    event = _mutable_event(db, event_id, identity, policy)
    delete_event(db, event)
    logger.info("Deleted event %s by user %s", event_id, identity.user_id)
    return {"message": "Event deleted successfully"}


@app.post("/events/{event_id}/rsvp", status_code=201)
def api_create_rsvp(
    event_id: str,
    payload: RSVPCreatePayload,
    db: Session = Depends(get_db),
):
    rsvp = admit_rsvp(
        db,
        event_id,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        message=payload.message,
    )
    return {
        "message": "RSVP submitted successfully",
        "rsvp": {
            "id": rsvp.id,
            "name": rsvp.name,
            "email": rsvp.email,
            "status": rsvp.status,
            "createdAt": isoformat_utc(rsvp.created_at),
        },
    }


# -------- Auth --------


@app.post("/auth/sign-up", status_code=201)
def api_sign_up(payload: SignUpPayload, db: Session = Depends(get_db)):
    user = create_user(
        db, email=payload.email, password=payload.password, name=payload.name
    )
    token = issue_token(db, user)
    logger.info("Registered user %s", user.id)
    return {
        "message": "User created successfully",
        "token": token,
        "user": _serialize_user(user, include_created=True),
    }


@app.post("/auth/sign-in")
def api_sign_in(payload: SignInPayload, db: Session = Depends(get_db)):
    user = authenticate_user(db, email=payload.email, password=payload.password)
    token = issue_token(db, user)
    return {
        "message": "Login successful",
        "token": token,
        "user": _serialize_user(user),
    }


@app.get("/auth/session")
@app.post("/auth/session")
@app.get("/auth/get-session")
@app.post("/auth/get-session")
def api_get_session(
    authorization: str | None = Header(None),
    db: Session = Depends(get_db),
):
    if not get_bearer_token(authorization):
        raise Unauthenticated("No token provided")
    identity = resolve_identity(db, authorization)
    if identity is None:
        raise Unauthenticated("Invalid token")
    user = db.get(User, identity.user_id)
    return {"user": _serialize_user(user)}


@app.post("/auth/sign-out")
def api_sign_out():
    # Tokens are stateless; clients drop theirs. `eventease rotate-signing-secret`
    # revokes every outstanding token at once.
    return {"message": "Signed out successfully"}
