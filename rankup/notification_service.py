"""Notification service layer.

`notify` only adds to the session; the caller's commit persists it together
with the change that triggered it.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import Notification

NOTIFICATION_TYPES = ("comment", "like", "reply", "mention", "system", "subscription", "report")


def serialize_notification(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "link": n.link,
        "read": n.read,
        "data": n.data or {},
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }


def notify(
    db: Session,
    *,
    user_id: int,
    type_: str,
    title: str,
    message: str,
    link: str | None = None,
    data: dict[str, Any] | None = None,
    actor_id: int | None = None,
) -> Notification | None:
    """Queue a notification; skipped when the actor is the recipient."""
    if type_ not in NOTIFICATION_TYPES:
        raise ValueError(f"unknown notification type: {type_}")
    if actor_id is not None and actor_id == user_id:
        return None
    n = Notification(user_id=user_id, type=type_, title=title, message=message[:500], link=link, data=data)
    db.add(n)
    return n


def list_notifications(db: Session, user_id: int, *, unread_only: bool, limit: int) -> dict[str, Any]:
    base = db.query(Notification).filter(Notification.user_id == user_id)
    q = base.filter(Notification.read.is_(False)) if unread_only else base
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
    return {
        "data": [serialize_notification(n) for n in rows],
        "unreadCount": base.filter(Notification.read.is_(False)).count(),
        "total": base.count(),
    }


def mark_read(db: Session, user_id: int, notification_id: int) -> None:
    n = db.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user_id).first()
    if n is None:
        raise NotFoundError("notification not found")
    n.read = True
    db.commit()


def mark_all_read(db: Session, user_id: int) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return int(count)


def delete_notification(db: Session, user_id: int, notification_id: int) -> None:
    n = db.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user_id).first()
    if n is None:
        raise NotFoundError("notification not found")
    db.delete(n)
    db.commit()


__all__ = [
    "NOTIFICATION_TYPES",
    "serialize_notification",
    "notify",
    "list_notifications",
    "mark_read",
    "mark_all_read",
    "delete_notification",
]
