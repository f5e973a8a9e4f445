"""Error taxonomy shared by the core and the HTTP layer.

Every error carries the HTTP status it maps to and a message that is safe
to show to callers. Private events surface as ``NotFound`` rather than
``Forbidden`` so their existence is not revealed.
"""

from __future__ import annotations


class EventEaseError(Exception):
    """Base class for errors rendered as ``{"error": message}``."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(EventEaseError):
    status_code = 400
    default_message = "Invalid request"


class Unauthenticated(EventEaseError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(EventEaseError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(EventEaseError):
    status_code = 404
    default_message = "Not found"


class Conflict(EventEaseError):
    status_code = 400
    default_message = "Conflict"


class Capacity(EventEaseError):
    status_code = 400
    default_message = "Capacity reached"


class Internal(EventEaseError):
    status_code = 500
    default_message = "Internal server error"


class AdmissionError(EventEaseError):
    """Raised by the RSVP admission engine."""


class InvalidAttendee(AdmissionError, InvalidInput):
    pass


class EventNotFound(AdmissionError, NotFound):
    default_message = "Event not found"


class EventNotPublic(AdmissionError, Forbidden):
    default_message = "Event is not public"


class RSVPClosed(AdmissionError, InvalidInput):
    default_message = "Cannot RSVP to past events"


class EventFull(AdmissionError, Capacity):
    default_message = "Event is at maximum capacity"


class DuplicateRSVP(AdmissionError, Conflict):
    default_message = "You have already RSVPed to this event"


class UserExists(Conflict):
    default_message = "User already exists"


class InvalidCredentials(InvalidInput):
    default_message = "Invalid credentials"
