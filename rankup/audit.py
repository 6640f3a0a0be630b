"""Audit event persistence + query.

`log_event` is fire-and-forget from request handlers: actor and request id are
inferred from the request context and a failed insert is logged, never raised.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import g, has_request_context
from sqlalchemy import and_, delete, func, select

from .app_sessions import get_session as get_auth_session
from .db import get_new_session
from .models import AuditEvent, utcnow

logger = logging.getLogger(__name__)


class AuditQueryFilters:
    def __init__(
        self,
        event: str | None = None,
        actor_user_id: int | None = None,
        ts_from: datetime | None = None,
        ts_to: datetime | None = None,
    ) -> None:
        self.event = event
        self.actor_user_id = actor_user_id
        self.ts_from = ts_from
        self.ts_to = ts_to


class AuditRepo:
    def insert(
        self,
        *,
        event: str,
        actor_user_id: int | None,
        actor_role: str | None,
        payload: dict | None,
        request_id: str | None,
    ) -> None:
        db = get_new_session()
        try:
            db.add(
                AuditEvent(
                    event=event,
                    actor_user_id=actor_user_id,
                    actor_role=actor_role,
                    payload=payload,
                    request_id=request_id,
                )
            )
            db.commit()
        finally:
            db.close()

    def query(self, filters: AuditQueryFilters, page: int, size: int) -> tuple[list[AuditEvent], int]:
        db = get_new_session()
        try:
            stmt = select(AuditEvent)
            conds = []
            if filters.event:
                conds.append(AuditEvent.event == filters.event)
            if filters.actor_user_id is not None:
                conds.append(AuditEvent.actor_user_id == filters.actor_user_id)
            if filters.ts_from:
                conds.append(AuditEvent.ts >= filters.ts_from)
            if filters.ts_to:
                conds.append(AuditEvent.ts <= filters.ts_to)
            if conds:
                stmt = stmt.where(and_(*conds))
            stmt = stmt.order_by(AuditEvent.ts.desc(), AuditEvent.id.desc())
            total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
            offset = (page - 1) * size
            rows = list(db.execute(stmt.limit(size).offset(offset)).scalars().all())
            return rows, int(total)
        finally:
            db.close()

    def purge_older_than(self, days: int) -> int:
        cutoff = utcnow() - timedelta(days=days)
        db = get_new_session()
        try:
            res = db.execute(delete(AuditEvent).where(AuditEvent.ts < cutoff))
            db.commit()
            return res.rowcount or 0
        finally:
            db.close()


def serialize_event(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "ts": ev.ts.isoformat() if ev.ts else None,
        "event": ev.event,
        "actor_user_id": ev.actor_user_id,
        "actor_role": ev.actor_role,
        "payload": ev.payload or {},
        "request_id": ev.request_id,
    }


def log_event(name: str, **fields) -> None:
    """Persist a generic audit event; actor inferred from the login session when absent."""
    try:
        sess = get_auth_session() if has_request_context() else None
        actor_user_id = fields.pop("actor_user_id", None) or (sess["user_id"] if sess else None)
        actor_role = fields.pop("actor_role", None) or (sess["role"] if sess else None)
        request_id = getattr(g, "request_id", None) if has_request_context() else None
        AuditRepo().insert(
            event=name,
            actor_user_id=actor_user_id,
            actor_role=actor_role,
            payload=fields,
            request_id=request_id,
        )
    except Exception:
        logger.warning("audit insert failed event=%s", name, exc_info=True)


__all__ = ["AuditRepo", "AuditQueryFilters", "log_event", "serialize_event"]
