"""Server-side login sessions.

A login issues a random token; only its SHA-256 hash is stored in
``user_sessions``. The raw token travels in the signed Flask cookie session
(``session["sid"]``) or as ``Authorization: Bearer <token>``. Resolution is
lazy and memoised on ``g`` so anonymous requests never touch the database.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import TypedDict

from flask import current_app, g, has_request_context, request
from flask import session as flask_session
from sqlalchemy.orm import Session

from .db import get_new_session
from .models import User, UserSession, utcnow

DEFAULT_TTL_SECONDS = 30 * 24 * 3600


class SessionData(TypedDict):
    user_id: int
    role: str
    plan: str
    email: str
    session_id: int


class SessionError(Exception):
    """Signals a 401 unauthorized due to missing/invalid session."""

    def __init__(self, message: str = "authentication required", code: str = "unauthorized"):
        super().__init__(message)
        self.code = code


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _ttl_seconds() -> int:
    if has_request_context():
        return int(current_app.config.get("SESSION_TTL_SECONDS") or DEFAULT_TTL_SECONDS)
    return DEFAULT_TTL_SECONDS


def create_session(
    db: Session,
    user: User,
    *,
    device_info: str | None = None,
    ip_address: str | None = None,
) -> tuple[str, UserSession]:
    """Create a session row for ``user``; returns the raw token (shown once) and the row."""
    token = secrets.token_hex(32)
    now = utcnow()
    row = UserSession(
        user_id=user.id,
        token_hash=hash_token(token),
        device_info=(device_info or "")[:255] or None,
        ip_address=ip_address,
        created_at=now,
        last_active=now,
        expires_at=now + timedelta(seconds=_ttl_seconds()),
    )
    db.add(row)
    db.commit()
    return token, row


def persist_login(sess, token: str, user: User) -> None:
    """Persist minimal auth state in the cookie session."""
    sess["sid"] = token
    sess["user_id"] = int(user.id)
    sess["role"] = user.role


def clear_login(sess) -> None:
    for k in ("sid", "user_id", "role"):
        sess.pop(k, None)


def _request_token() -> tuple[str | None, bool]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(None, 1)[1].strip() or None, True
    return flask_session.get("sid"), False


def resolve_token(db: Session, token: str, *, now: datetime | None = None) -> tuple[User, UserSession] | None:
    """Return (user, session row) for a live token.

    Expired rows are deleted on sight; revoked rows simply do not resolve.
    """
    now = now or utcnow()
    row = db.query(UserSession).filter(UserSession.token_hash == hash_token(token)).first()
    if row is None or row.revoked_at is not None:
        return None
    if row.expires_at <= now:
        db.delete(row)
        db.commit()
        return None
    user = db.get(User, row.user_id)
    if user is None:
        return None
    row.last_active = now
    db.commit()
    return user, row


def _load() -> None:
    g._auth_loaded = True
    g.current_user = None
    g.auth_via_bearer = False
    g.auth_suspended = False
    token, via_bearer = _request_token()
    if not token:
        return
    db = get_new_session()
    try:
        found = resolve_token(db, token)
        if found is None:
            if not via_bearer:
                clear_login(flask_session)
            return
        user, row = found
        if user.suspended:
            g.auth_suspended = True
            return
        g.auth_via_bearer = via_bearer
        g.current_user = SessionData(
            user_id=user.id,
            role=user.role,
            plan=user.plan or "free",
            email=user.email,
            session_id=row.id,
        )
    finally:
        db.close()


def get_session() -> SessionData | None:
    if not has_request_context():
        return None
    if not getattr(g, "_auth_loaded", False):
        _load()
    return g.current_user


def require_session() -> SessionData:
    data = get_session()
    if data is None:
        if getattr(g, "auth_suspended", False):
            raise SessionError("account suspended", code="account_suspended")
        raise SessionError("authentication required")
    return data


def current_user_id() -> int | None:
    data = get_session()
    return data["user_id"] if data else None


def revoke_session(db: Session, row: UserSession) -> None:
    row.revoked_at = utcnow()
    db.commit()


def revoke_all(db: Session, user_id: int, *, except_session_id: int | None = None) -> int:
    """Revoke every live session of ``user_id`` except one; returns the count."""
    q = db.query(UserSession).filter(UserSession.user_id == user_id, UserSession.revoked_at.is_(None))
    if except_session_id is not None:
        q = q.filter(UserSession.id != except_session_id)
    now = utcnow()
    count = 0
    for row in q.all():
        row.revoked_at = now
        count += 1
    db.commit()
    return count


__all__ = [
    "SessionData",
    "SessionError",
    "hash_token",
    "create_session",
    "persist_login",
    "clear_login",
    "resolve_token",
    "get_session",
    "require_session",
    "current_user_id",
    "revoke_session",
    "revoke_all",
]
