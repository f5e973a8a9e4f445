from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from eventease import admission, crud, database
from eventease.errors import (
    DuplicateRSVP,
    EventFull,
    EventNotFound,
    EventNotPublic,
    InvalidAttendee,
    RSVPClosed,
)
from eventease.models import RSVP, Base, Event, User
from eventease.utils import utcnow


def _count_rsvps(event_id: str) -> int:
    with database.get_session() as session:
        return session.scalar(
            select(func.count(RSVP.id)).where(RSVP.event_id == event_id)
        )


def _admit(event_id: str, **kwargs):
    kwargs.setdefault("name", "Guest")
    kwargs.setdefault("email", "guest@example.com")
    session = database.SessionLocal()
    try:
        return admission.admit_rsvp(session, event_id, **kwargs)
    finally:
        session.close()


def test_admit_rsvp_confirms_and_strips_fields(make_user, make_event):
    owner_id, _ = make_user()
    event_id = make_event(owner_id)

    rsvp = _admit(
        event_id,
        name="  Ada  ",
        email=" ada@example.com ",
        phone="  ",
        message="See you there",
    )

    assert rsvp.status == "CONFIRMED"
    assert rsvp.name == "Ada"
    assert rsvp.email == "ada@example.com"
    assert rsvp.phone is None
    assert rsvp.message == "See you there"
    assert _count_rsvps(event_id) == 1


@pytest.mark.parametrize(
    "name,email",
    [("", "a@x.com"), ("Ada", ""), ("   ", "a@x.com"), (None, None)],
)
def test_missing_name_or_email_is_rejected(make_user, make_event, name, email):
    owner_id, _ = make_user()
    event_id = make_event(owner_id)

    with pytest.raises(InvalidAttendee) as excinfo:
        _admit(event_id, name=name, email=email)
    assert excinfo.value.message == "Name and email are required"
    assert _count_rsvps(event_id) == 0


@pytest.mark.parametrize("email", ["plain", "a@b", "a b@x.com", "a@@x.com"])
def test_malformed_email_is_rejected(make_user, make_event, email):
    owner_id, _ = make_user()
    event_id = make_event(owner_id)

    with pytest.raises(InvalidAttendee) as excinfo:
        _admit(event_id, email=email)
    assert excinfo.value.message == "Invalid email format"


def test_input_checks_run_before_event_lookup():
    with pytest.raises(InvalidAttendee):
        _admit("missing", name="", email="a@x.com")
    with pytest.raises(InvalidAttendee):
        _admit("missing", email="not-an-email")


def test_unknown_event_is_not_found():
    with pytest.raises(EventNotFound) as excinfo:
        _admit("does-not-exist")
    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Event not found"


def test_private_event_is_forbidden(make_user, make_event):
    owner_id, _ = make_user()
    event_id = make_event(owner_id, is_public=False)

    with pytest.raises(EventNotPublic) as excinfo:
        _admit(event_id)
    assert excinfo.value.status_code == 403


def test_started_event_is_closed_even_with_capacity(make_user, make_event):
    owner_id, _ = make_user()
    start = utcnow().replace(microsecond=0) + timedelta(hours=1)
    event_id = make_event(owner_id, start=start, max_attendees=10)

    with pytest.raises(RSVPClosed) as excinfo:
        _admit(event_id, now=start + timedelta(seconds=1))
    assert excinfo.value.message == "Cannot RSVP to past events"

    # exactly at the start time is still open
    rsvp = _admit(event_id, now=start)
    assert rsvp.status == "CONFIRMED"


def test_closed_wins_over_full(make_user, make_event):
    owner_id, _ = make_user()
    start = utcnow().replace(microsecond=0) + timedelta(hours=1)
    event_id = make_event(owner_id, start=start, max_attendees=1)
    _admit(event_id, email="first@example.com")

    with pytest.raises(RSVPClosed):
        _admit(event_id, email="late@example.com", now=start + timedelta(minutes=5))


def test_capacity_and_duplicate_scenario(make_user, make_event):
    owner_id, _ = make_user()
    event_id = make_event(owner_id, max_attendees=1)

    first = _admit(event_id, email="a@x.com")
    assert first.status == "CONFIRMED"

    # full is checked before duplicate
    with pytest.raises(EventFull):
        _admit(event_id, email="a@x.com")
    with pytest.raises(EventFull) as excinfo:
        _admit(event_id, email="b@x.com")
    assert excinfo.value.message == "Event is at maximum capacity"
    assert _count_rsvps(event_id) == 1


def test_duplicate_email_is_rejected_when_capacity_remains(make_user, make_event):
    owner_id, _ = make_user()
    event_id = make_event(owner_id, max_attendees=5)
    _admit(event_id, email="a@x.com")

    with pytest.raises(DuplicateRSVP) as excinfo:
        _admit(event_id, email="a@x.com")
    assert excinfo.value.message == "You have already RSVPed to this event"
    assert _count_rsvps(event_id) == 1


def test_unlimited_event_accepts_many(make_user, make_event):
    owner_id, _ = make_user()
    event_id = make_event(owner_id)
    for index in range(5):
        _admit(event_id, email=f"guest{index}@example.com")
    assert _count_rsvps(event_id) == 5


def test_guarded_insert_refuses_when_precheck_was_stale(
    monkeypatch, make_user, make_event
):
    owner_id, _ = make_user()
    event_id = make_event(owner_id, max_attendees=1)
    _admit(event_id, email="a@x.com")

    # Simulate a concurrent writer filling the last seat after the count check.
    monkeypatch.setattr(admission, "confirmed_count", lambda session, event_id: 0)

    with pytest.raises(EventFull):
        _admit(event_id, email="b@x.com", max_attempts=2)
    assert _count_rsvps(event_id) == 1


def test_unique_constraint_catches_stale_duplicate_check(
    monkeypatch, make_user, make_event
):
    owner_id, _ = make_user()
    event_id = make_event(owner_id)
    _admit(event_id, email="a@x.com")

    monkeypatch.setattr(admission, "_has_rsvp", lambda session, event_id, email: False)

    with pytest.raises(DuplicateRSVP):
        _admit(event_id, email="a@x.com", max_attempts=2)
    assert _count_rsvps(event_id) == 1


def test_retry_succeeds_after_lost_race(monkeypatch, make_user, make_event):
    owner_id, _ = make_user()
    event_id = make_event(owner_id, max_attendees=3)

    real_insert = admission._guarded_insert
    calls = {"count": 0}

    def flaky_insert(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return real_insert(*args, **kwargs)

    monkeypatch.setattr(admission, "_guarded_insert", flaky_insert)

    rsvp = _admit(event_id, email="retry@example.com")
    assert rsvp.email == "retry@example.com"
    assert calls["count"] == 2


@pytest.fixture()
def file_sessions(tmp_path):
    """Sessions on a file-backed database shared by several threads."""

    engine = database.build_engine(f"sqlite:///{tmp_path / 'concurrency.sqlite'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    yield factory
    engine.dispose()


def _seed_file_event(factory, *, max_attendees: int | None) -> str:
    start = utcnow().replace(microsecond=0) + timedelta(days=1)
    with factory() as session:
        user = User(email="owner@example.com", password_hash="x")
        event = Event(
            creator=user,
            title="Crowded",
            location="Hall",
            start_date=start,
            max_attendees=max_attendees,
        )
        session.add_all([user, event])
        session.commit()
        return event.id


def _run_concurrently(factory, event_id: str, emails: list[str]) -> list[object]:
    def attempt(email: str):
        with factory() as session:
            try:
                return admission.admit_rsvp(
                    session, event_id, name="Guest", email=email
                )
            except (EventFull, DuplicateRSVP) as exc:
                return exc

    with ThreadPoolExecutor(max_workers=8) as pool:
        return list(pool.map(attempt, emails))


def test_concurrent_admissions_never_exceed_capacity(file_sessions):
    event_id = _seed_file_event(file_sessions, max_attendees=3)
    emails = [f"guest{index}@example.com" for index in range(12)]

    results = _run_concurrently(file_sessions, event_id, emails)

    admitted = [r for r in results if isinstance(r, RSVP)]
    rejected = [r for r in results if isinstance(r, EventFull)]
    assert len(admitted) == 3
    assert len(rejected) == 9
    with file_sessions() as session:
        assert crud_count(session, event_id) == 3


def test_concurrent_duplicates_admit_once(file_sessions):
    event_id = _seed_file_event(file_sessions, max_attendees=None)

    results = _run_concurrently(file_sessions, event_id, ["same@example.com"] * 8)

    admitted = [r for r in results if isinstance(r, RSVP)]
    duplicates = [r for r in results if isinstance(r, DuplicateRSVP)]
    assert len(admitted) == 1
    assert len(duplicates) == 7
    with file_sessions() as session:
        assert crud_count(session, event_id) == 1


def crud_count(session, event_id: str) -> int:
    return crud.rsvp_counts(session, [event_id])[event_id]
