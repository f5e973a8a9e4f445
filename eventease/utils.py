"""Utility helpers for EventEase."""

from __future__ import annotations

import re
from datetime import UTC, datetime

_email_pattern = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_filename_invalid = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def parse_datetime(raw: str | datetime) -> datetime:
    """Parse an ISO8601 string (``Z`` suffix allowed) into naive UTC.

    Raises ``ValueError`` when the value cannot be parsed.
    """

    if isinstance(raw, datetime):
        return to_naive_utc(raw)
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("Empty datetime value")
    return to_naive_utc(datetime.fromisoformat(raw.strip()))


def isoformat_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def is_valid_email(value: str) -> bool:
    """Single ``@`` with a dot somewhere after it, and no whitespace."""

    return bool(_email_pattern.match(value or ""))


def calendar_filename(title: str | None) -> str:
    """Return a download name such as ``team_offsite.ics``."""

    stem = _filename_invalid.sub("_", title or "").lower()
    return f"{stem or 'event'}.ics"
