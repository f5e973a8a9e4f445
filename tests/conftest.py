"""Shared pytest fixtures for EventEase."""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventease import api, auth, crud, database, storage
from eventease.models import Base, User
from eventease.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.build_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    api.app.dependency_overrides.clear()


@pytest.fixture()
def client():
    with TestClient(api.app) as test_client:
        yield test_client


@pytest.fixture()
def make_user():
    """Create a user and return ``(user_id, auth_headers)``."""

    def _make(
        email: str = "owner@example.com",
        *,
        password: str = "secret123",
        name: str | None = "Owner",
        role: str = "EVENT_OWNER",
    ):
        with database.get_session() as session:
            user = crud.create_user(
                session, email=email, password=password, name=name, role=role
            )
            token = auth.issue_token(session, user)
            user_id = user.id
        return user_id, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture()
def make_event():
    """Insert an event directly, bypassing the future-start check."""

    def _make(
        creator_id: str,
        *,
        title: str = "Launch Party",
        location: str = "HQ",
        start=None,
        end=None,
        description: str | None = None,
        is_public: bool = True,
        max_attendees: int | None = None,
    ) -> str:
        start = start or utcnow().replace(microsecond=0) + timedelta(days=7)
        with database.get_session() as session:
            creator = session.get(User, creator_id)
            event = crud.create_event(
                session,
                creator=creator,
                title=title,
                location=location,
                start_date=start,
                end_date=end,
                description=description,
                is_public=is_public,
                max_attendees=max_attendees,
                now=start - timedelta(days=1),
            )
            event_id = event.id
        return event_id

    return _make
