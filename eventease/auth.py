"""Bearer-token identity resolution and password handling.

Tokens are HS256 JWTs carrying ``userId``, ``email`` and ``role``. The
claims are only used to locate the user: the returned identity always
reflects the current ``users`` row, so a role change takes effect on the
next request without reissuing tokens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

import jwt
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from .config import settings
from .models import User
from .storage import fetch_signing_secret

logger = logging.getLogger("uvicorn.error")

TOKEN_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str
    role: str


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str | None, password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def get_bearer_token(authorization: str | None) -> str | None:
    auth_header = authorization or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def issue_token(session: Session, user: User, *, now: datetime | None = None) -> str:
    """Sign a token for ``user`` valid for ``token_ttl_days``."""
    issued_at = now or datetime.now(UTC)
    claims = {
        "userId": user.id,
        "email": user.email,
        "role": user.role,
        "iat": issued_at,
        "exp": issued_at + settings.token_ttl,
    }
    secret = fetch_signing_secret(session)
    return jwt.encode(claims, secret, algorithm=TOKEN_ALGORITHM)


def decode_token(session: Session, token: str) -> dict | None:
    """Return verified claims, or ``None`` for bad signatures and expired tokens."""
    secret = fetch_signing_secret(session)
    try:
        return jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired bearer token")
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc.__class__.__name__)
    return None


def resolve_identity(session: Session, authorization: str | None) -> Identity | None:
    """Map an ``Authorization`` header to the caller's identity, if any."""
    token = get_bearer_token(authorization)
    if not token:
        return None
    claims = decode_token(session, token)
    if not claims:
        return None
    user_id = claims.get("userId")
    if not isinstance(user_id, str):
        return None
    user = session.get(User, user_id)
    if not user:
        return None
    return Identity(user_id=user.id, email=user.email, role=user.role)
