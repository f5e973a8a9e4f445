"""EventEase: event publishing and RSVP admission service."""
