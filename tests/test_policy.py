from __future__ import annotations

import types

import pytest

from eventease.auth import Identity
from eventease.models import Event
from eventease.policy import EventAccessPolicy


def _event(*, is_public: bool = True, creator_id: str = "owner") -> Event:
    return Event(id="evt", creator_id=creator_id, is_public=is_public)


OWNER = Identity(user_id="owner", email="owner@example.com", role="EVENT_OWNER")
STRANGER = Identity(user_id="other", email="other@example.com", role="EVENT_OWNER")
ADMIN = Identity(user_id="admin", email="admin@example.com", role="ADMIN")
STAFF = Identity(user_id="staff", email="staff@example.com", role="STAFF")


def test_public_event_is_visible_to_everyone():
    policy = EventAccessPolicy()
    event = _event()
    assert policy.can_view(event, None)
    assert policy.can_view(event, STRANGER)
    assert policy.can_view(event, OWNER)


def test_private_event_is_visible_only_to_creator_by_default():
    policy = EventAccessPolicy()
    event = _event(is_public=False)
    assert policy.can_view(event, OWNER)
    assert not policy.can_view(event, None)
    assert not policy.can_view(event, STRANGER)
    assert not policy.can_view(event, ADMIN)


def test_privileged_view_flag_opens_private_events_to_admin_and_staff():
    policy = EventAccessPolicy(allow_privileged_view=True)
    event = _event(is_public=False)
    assert policy.can_view(event, ADMIN)
    assert policy.can_view(event, STAFF)
    assert not policy.can_view(event, STRANGER)
    assert not policy.can_view(event, None)


def test_only_creator_mutates_by_default():
    policy = EventAccessPolicy()
    event = _event()
    assert policy.can_mutate(event, OWNER)
    assert not policy.can_mutate(event, STRANGER)
    assert not policy.can_mutate(event, ADMIN)
    assert not policy.can_mutate(event, None)


def test_privileged_mutation_flag():
    policy = EventAccessPolicy(allow_privileged_mutation=True)
    event = _event()
    assert policy.can_mutate(event, ADMIN)
    assert policy.can_mutate(event, STAFF)
    assert not policy.can_mutate(event, STRANGER)
    assert not policy.can_mutate(event, None)


@pytest.mark.parametrize(
    "identity,expected",
    [(None, True), (STRANGER, True), (ADMIN, True), (OWNER, False)],
)
def test_view_is_counted_for_everyone_but_the_creator(identity, expected):
    assert EventAccessPolicy().should_count_view(_event(), identity) is expected


def test_policy_reads_flags_from_settings():
    fake_settings = types.SimpleNamespace(
        allow_privileged_view=True, allow_privileged_mutation=False
    )
    policy = EventAccessPolicy.from_settings(fake_settings)
    assert policy.allow_privileged_view is True
    assert policy.allow_privileged_mutation is False
