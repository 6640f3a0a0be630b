"""Database engine + session management."""

from __future__ import annotations

from contextlib import suppress

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from .models import Base

_engine: Engine | None = None
_SessionFactory: scoped_session[Session] | None = None


def _normalize_url(url: str) -> str:
    # Normalize postgres schemes to ensure SQLAlchemy uses psycopg v3
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://") :]
    if url.startswith("postgresql://") and "+" not in url.split("://", 1)[1].split("@", 1)[0]:
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


def _sqlite_foreign_keys(dbapi_conn, _record) -> None:
    # SQLite ships with FK enforcement off per connection
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def _build(database_url: str) -> None:
    global _engine, _SessionFactory
    _engine = create_engine(_normalize_url(database_url), future=True, echo=False)
    if _engine.dialect.name == "sqlite":
        event.listen(_engine, "connect", _sqlite_foreign_keys)
    _SessionFactory = scoped_session(
        sessionmaker(bind=_engine, autoflush=False, autocommit=False, expire_on_commit=False)
    )


def init_engine(database_url: str, force: bool = False) -> Engine:
    """Initialize global engine (idempotent) or reinitialize when force=True."""
    if _engine is None:
        _build(database_url)
    elif force:
        _engine.dispose()
        if _SessionFactory is not None:
            with suppress(Exception):  # pragma: no cover
                _SessionFactory.remove()
        _build(database_url)
    assert _engine is not None
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("DB not initialized; call init_engine first")
    return _SessionFactory()


def get_new_session() -> Session:
    """Return a brand-new Session not bound to the thread-scoped registry.

    For side writes (audit, session bookkeeping) that must not commit or close
    the handler's own unit of work.
    """
    if _engine is None:
        raise RuntimeError("DB not initialized; call init_engine first")
    return sessionmaker(bind=_engine, autoflush=False, autocommit=False, expire_on_commit=False)()


def remove_session() -> None:
    """Drop the thread-scoped session (called on app context teardown)."""
    if _SessionFactory is not None:
        _SessionFactory.remove()


def create_all() -> None:
    if _engine is None:
        raise RuntimeError("Engine not initialized")
    Base.metadata.create_all(_engine)


def ping() -> bool:
    """Cheap connectivity check used by the health endpoint."""
    if _engine is None:
        return False
    with _engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True
