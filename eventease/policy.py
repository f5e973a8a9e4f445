"""Who may see, change, and bump the view counter of an event."""

from __future__ import annotations

from dataclasses import dataclass

from .auth import Identity
from .config import Settings
from .models import PRIVILEGED_ROLES, Event


def _is_creator(event: Event, identity: Identity | None) -> bool:
    return identity is not None and identity.user_id == event.creator_id


def _is_privileged(identity: Identity | None) -> bool:
    return identity is not None and identity.role in PRIVILEGED_ROLES


@dataclass(frozen=True)
class EventAccessPolicy:
    allow_privileged_view: bool = False
    allow_privileged_mutation: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "EventAccessPolicy":
        return cls(
            allow_privileged_view=settings.allow_privileged_view,
            allow_privileged_mutation=settings.allow_privileged_mutation,
        )

    def can_view(self, event: Event, identity: Identity | None) -> bool:
        if event.is_public or _is_creator(event, identity):
            return True
        return self.allow_privileged_view and _is_privileged(identity)

    def can_mutate(self, event: Event, identity: Identity | None) -> bool:
        if identity is None:
            return False
        if _is_creator(event, identity):
            return True
        return self.allow_privileged_mutation and _is_privileged(identity)

    def should_count_view(self, event: Event, identity: Identity | None) -> bool:
        return not _is_creator(event, identity)
