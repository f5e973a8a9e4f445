"""Database initialization and helpers."""

from __future__ import annotations

import secrets
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from .config import settings
from .database import engine, get_session
from .models import Meta
from .utils import utcnow


def init_db() -> None:
    upgrade_database(make_backup=False)
    ensure_signing_secret()


def _alembic_config() -> Config:
    package_dir = Path(__file__).resolve().parent
    script_location = package_dir / "alembic"
    ini_path = script_location.parent / "alembic.ini"

    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(script_location))
    # ConfigParser interpolates "%", which URL-encoded paths contain.
    url = engine.url.render_as_string(hide_password=False)
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return config


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Upgrade the database schema in-place.

    Returns a list of applied actions.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)

    if make_backup and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    config = _alembic_config()

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        # Tables created outside Alembic (e.g. metadata.create_all): baseline them.
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")

    return actions


def ensure_signing_secret() -> str:
    """Return the stored token signing secret, generating it on first use."""
    with get_session() as session:
        existing = session.get(Meta, settings.signing_secret_key)
        if existing:
            return existing.value
        secret = secrets.token_urlsafe(48)
        meta = Meta(key=settings.signing_secret_key, value=secret, updated_at=utcnow())
        session.merge(meta)
        return secret


def rotate_signing_secret() -> str:
    """Replace the stored signing secret; every issued token stops verifying."""
    secret = secrets.token_urlsafe(48)
    with get_session() as session:
        meta = Meta(key=settings.signing_secret_key, value=secret, updated_at=utcnow())
        session.merge(meta)
    return secret


def fetch_signing_secret(session: Session) -> str:
    """Return the configured secret, else the stored one (created if missing)."""
    if settings.jwt_secret:
        return settings.jwt_secret
    meta = session.get(Meta, settings.signing_secret_key)
    if meta:
        return meta.value
    secret = secrets.token_urlsafe(48)
    session.merge(Meta(key=settings.signing_secret_key, value=secret, updated_at=utcnow()))
    session.flush()
    return secret
