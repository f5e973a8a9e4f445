"""Attendee list export."""

from __future__ import annotations

import csv
import io
from typing import TYPE_CHECKING

from .utils import isoformat_utc

if TYPE_CHECKING:
    from eventease.models import Event

ATTENDEE_COLUMNS = ("Name", "Email", "Phone", "Message", "Status", "RSVP Date")


def attendees_filename(event_id: str) -> str:
    return f"event-attendees-{event_id}.csv"


def generate_attendee_csv(event: Event) -> str:
    """Return one CSV row per RSVP, oldest first, under a header row."""

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(ATTENDEE_COLUMNS)
    for rsvp in event.rsvps:
        writer.writerow(
            [
                rsvp.name,
                rsvp.email,
                rsvp.phone or "",
                rsvp.message or "",
                rsvp.status,
                isoformat_utc(rsvp.created_at),
            ]
        )
    return output.getvalue()
