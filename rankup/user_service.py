"""Account service: profile, password change, data export and erasure."""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from .app_sessions import revoke_all
from .audit import AuditQueryFilters, AuditRepo, serialize_event
from .cache import user_cache
from .community_service import delete_comment_rows, delete_post_rows
from .errors import ConflictError, NotFoundError, ValidationError, field_error
from .models import (
    AuthToken,
    Bookmark,
    Comment,
    Like,
    Notification,
    Post,
    Report,
    Stock,
    User,
    UserSession,
    utcnow,
)

DELETE_CONFIRMATION = "DELETE_MY_ACCOUNT"
EXPORT_AUDIT_LIMIT = 1000


def _iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def serialize_user(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "image": u.image,
        "bio": u.bio,
        "role": u.role,
        "plan": u.plan or "free",
        "provider": u.provider,
        "suspended": bool(u.suspended),
        "emailVerified": bool(u.email_verified),
        "twoFactorEnabled": bool(u.two_factor_enabled),
        "createdAt": _iso(u.created_at),
        "updatedAt": _iso(u.updated_at),
    }


def profile_cache_key(user_id: int) -> str:
    return f"profile:{user_id}"


def invalidate_profile(user_id: int) -> None:
    user_cache.delete(profile_cache_key(user_id))


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("user not found")
    return user


def update_profile(db: Session, user_id: int, changes: dict[str, Any]) -> dict[str, Any]:
    user = get_user(db, user_id)
    if not changes:
        raise ValidationError("no updatable fields supplied")
    new_email = changes.get("email")
    if new_email and new_email != user.email:
        taken = db.query(User.id).filter(User.email == new_email, User.id != user.id).first()
        if taken:
            raise ConflictError("email_in_use")
        user.email = new_email
        user.email_verified = False
    for field in ("name", "image", "bio"):
        if field in changes:
            setattr(user, field, changes[field])
    db.commit()
    return serialize_user(user)


def change_password(db: Session, user_id: int, current: str, new: str, *, session_id: int | None = None) -> int:
    """Replace the password hash; returns the number of other sessions revoked."""
    user = get_user(db, user_id)
    if user.provider != "email" or not user.password_hash:
        raise ValidationError("password cannot be changed for this account")
    if not current or not check_password_hash(user.password_hash, current):
        raise field_error("currentPassword", "current password is incorrect", "invalid_password")
    user.password_hash = generate_password_hash(new)
    db.commit()
    return revoke_all(db, user.id, except_session_id=session_id)


# ---- Export --------------------------------------------------------------------------

def export_user_data(db: Session, user_id: int) -> dict[str, Any]:
    user = get_user(db, user_id)
    posts = db.query(Post).filter(Post.author_id == user_id).order_by(Post.created_at.asc()).all()
    comments = db.query(Comment).filter(Comment.author_id == user_id).order_by(Comment.created_at.asc()).all()
    likes = db.query(Like).filter(Like.user_id == user_id).all()
    bookmarks = (
        db.query(Bookmark, Stock.symbol)
        .join(Stock, Stock.id == Bookmark.stock_id)
        .filter(Bookmark.user_id == user_id)
        .all()
    )
    sessions = db.query(UserSession).filter(UserSession.user_id == user_id).all()
    events, _ = AuditRepo().query(AuditQueryFilters(actor_user_id=user_id), 1, EXPORT_AUDIT_LIMIT)
    return {
        "user": serialize_user(user),
        "posts": [
            {
                "id": p.id,
                "title": p.title,
                "content": p.content,
                "category": p.category,
                "views": p.views,
                "createdAt": _iso(p.created_at),
            }
            for p in posts
        ],
        "comments": [
            {"id": c.id, "postId": c.post_id, "content": c.content, "createdAt": _iso(c.created_at)}
            for c in comments
        ],
        "likes": [{"postId": lk.post_id, "createdAt": _iso(lk.created_at)} for lk in likes],
        "bookmarks": [{"stockId": b.stock_id, "symbol": sym, "createdAt": _iso(b.created_at)} for b, sym in bookmarks],
        "sessions": [
            {
                "id": s.id,
                "deviceInfo": s.device_info,
                "ipAddress": s.ip_address,
                "createdAt": _iso(s.created_at),
                "lastActive": _iso(s.last_active),
                "revokedAt": _iso(s.revoked_at),
            }
            for s in sessions
        ],
        "auditEvents": [serialize_event(e) for e in events],
        "exportedAt": utcnow().isoformat(),
    }


def export_activity_rows(data: dict[str, Any]):
    """Flatten exported posts and comments into CSV rows (header first)."""
    yield ["type", "id", "postId", "title", "content", "createdAt"]
    for p in data["posts"]:
        yield ["post", p["id"], p["id"], p["title"], p["content"], p["createdAt"]]
    for c in data["comments"]:
        yield ["comment", c["id"], c["postId"], "", c["content"], c["createdAt"]]


# ---- Erasure -------------------------------------------------------------------------

def purge_user(db: Session, user_id: int) -> dict[str, int]:
    """Delete the account and everything it owns; caller commits."""
    user = get_user(db, user_id)
    counts = {"posts": 0, "comments": 0}
    for post in db.query(Post).filter(Post.author_id == user_id).all():
        delete_post_rows(db, post)
        counts["posts"] += 1
    db.flush()
    comment_ids = [cid for (cid,) in db.query(Comment.id).filter(Comment.author_id == user_id).all()]
    for cid in comment_ids:
        # Earlier subtree deletes may already have removed this one
        comment = db.query(Comment).filter(Comment.id == cid).first()
        if comment is None:
            continue
        counts["comments"] += delete_comment_rows(db, comment)
    db.query(Like).filter(Like.user_id == user_id).delete(synchronize_session=False)
    db.query(Bookmark).filter(Bookmark.user_id == user_id).delete(synchronize_session=False)
    db.query(Report).filter(Report.reporter_id == user_id).delete(synchronize_session=False)
    db.query(Report).filter(Report.reviewed_by == user_id).update({Report.reviewed_by: None}, synchronize_session=False)
    db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
    db.query(UserSession).filter(UserSession.user_id == user_id).delete(synchronize_session=False)
    db.query(AuthToken).filter(AuthToken.user_id == user_id).delete(synchronize_session=False)
    db.delete(user)
    return counts


def delete_account(db: Session, user_id: int, confirmation: Any) -> dict[str, int]:
    if confirmation != DELETE_CONFIRMATION:
        raise field_error("confirmation", f'send confirmation: "{DELETE_CONFIRMATION}"', "confirmation_required")
    counts = purge_user(db, user_id)
    db.commit()
    return counts


__all__ = [
    "DELETE_CONFIRMATION",
    "serialize_user",
    "profile_cache_key",
    "invalidate_profile",
    "get_user",
    "update_profile",
    "change_password",
    "export_user_data",
    "export_activity_rows",
    "purge_user",
    "delete_account",
]
