"""Admin moderation service: dashboard stats, users, posts, comments, reports.

Handlers call these after `require_admin` and write the audit event once the
service has committed.
"""
from __future__ import annotations

from datetime import datetime, time
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .app_authz import AuthzError
from .app_sessions import SessionData, revoke_all
from .community_service import author_summaries, delete_comment, delete_post, serialize_report
from .errors import NotFoundError, ValidationError
from .models import Comment, Post, Report, User, utcnow
from .notification_service import notify
from .pagination import PageRequest, paginate_query
from .roles import has_permission, normalize
from .user_service import purge_user, serialize_user

USER_ACTIONS = ("suspend", "activate", "delete", "makeAdmin", "removeAdmin")
USER_STATUS_FILTERS = ("all", "active", "suspended")
POST_SORTS = ("newest", "oldest", "mostReported")
REPORT_STATUSES = ("pending", "reviewed", "resolved", "dismissed")
REPORT_ACTIONS = {"review": "reviewed", "resolve": "resolved", "dismiss": "dismissed"}


def _today_start() -> datetime:
    return datetime.combine(utcnow().date(), time.min)


def _like(term: str) -> str:
    return f"%{term.lower()}%"


def dashboard_stats(db: Session) -> dict[str, Any]:
    today = _today_start()
    active = {uid for (uid,) in db.query(Post.author_id).filter(Post.created_at >= today).distinct()}
    active |= {uid for (uid,) in db.query(Comment.author_id).filter(Comment.created_at >= today).distinct()}
    return {
        "totalUsers": db.query(func.count(User.id)).scalar() or 0,
        "totalPosts": db.query(func.count(Post.id)).scalar() or 0,
        "totalComments": db.query(func.count(Comment.id)).scalar() or 0,
        "totalReports": db.query(func.count(Report.id)).scalar() or 0,
        "pendingReports": db.query(func.count(Report.id)).filter(Report.status == "pending").scalar() or 0,
        "activeUsers": len(active),
        "postsToday": db.query(func.count(Post.id)).filter(Post.created_at >= today).scalar() or 0,
        "commentsToday": db.query(func.count(Comment.id)).filter(Comment.created_at >= today).scalar() or 0,
        "newUsersToday": db.query(func.count(User.id)).filter(User.created_at >= today).scalar() or 0,
    }


# ---- Users ---------------------------------------------------------------------------

def _count_by(db: Session, col, ids: list[int]) -> dict[int, int]:
    if not ids:
        return {}
    return {k: int(n) for k, n in db.query(col, func.count()).filter(col.in_(ids)).group_by(col).all()}


def list_users(db: Session, *, search: str | None, status: str, page_req: PageRequest) -> tuple[list[dict[str, Any]], int]:
    if status not in USER_STATUS_FILTERS:
        raise ValidationError([{"field": "status", "message": "status must be all, active or suspended", "code": "invalid_choice"}])
    q = db.query(User)
    if search:
        q = q.filter(or_(func.lower(User.name).like(_like(search)), func.lower(User.email).like(_like(search))))
    if status == "suspended":
        q = q.filter(User.suspended.is_(True))
    elif status == "active":
        q = q.filter(User.suspended.is_(False))
    rows, total = paginate_query(q.order_by(User.created_at.desc(), User.id.desc()), page_req)
    ids = [u.id for u in rows]
    posts = _count_by(db, Post.author_id, ids)
    comments = _count_by(db, Comment.author_id, ids)
    out = []
    for u in rows:
        item = serialize_user(u)
        item["postsCount"] = posts.get(u.id, 0)
        item["commentsCount"] = comments.get(u.id, 0)
        out.append(item)
    return out, total


def apply_user_action(db: Session, admin: SessionData, user_id: int, action: str) -> dict[str, Any] | None:
    """Apply a moderation action; returns the updated user, or None when deleted."""
    if action not in USER_ACTIONS:
        raise ValidationError([{"field": "action", "message": f"action must be one of: {', '.join(USER_ACTIONS)}", "code": "invalid_choice"}])
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("user not found")
    if user.id == admin["user_id"]:
        raise ValidationError("cannot modify your own account")
    if normalize(user.role) == "super_admin" and not has_permission(admin["role"], "admin:roles"):
        raise AuthzError("cannot modify a super admin", required="super_admin")
    if action == "delete":
        purge_user(db, user.id)
        db.commit()
        return None
    if action == "suspend":
        user.suspended = True
    elif action == "activate":
        user.suspended = False
    elif action == "makeAdmin":
        user.role = "admin"
    elif action == "removeAdmin":
        user.role = "user"
    db.commit()
    if action == "suspend":
        revoke_all(db, user.id)
    return serialize_user(user)


# ---- Posts & comments ----------------------------------------------------------------

def _report_counts(db: Session, type_: str, ids: list[int]) -> dict[int, int]:
    if not ids:
        return {}
    rows = (
        db.query(Report.target_id, func.count(Report.id))
        .filter(Report.type == type_, Report.target_id.in_(ids))
        .group_by(Report.target_id)
        .all()
    )
    return {tid: int(n) for tid, n in rows}


def list_posts(
    db: Session, *, search: str | None, category: str | None, sort_by: str, page_req: PageRequest
) -> tuple[list[dict[str, Any]], int]:
    if sort_by not in POST_SORTS:
        raise ValidationError([{"field": "sortBy", "message": "sortBy must be newest, oldest or mostReported", "code": "invalid_choice"}])
    q = db.query(Post)
    if search:
        q = q.filter(or_(func.lower(Post.title).like(_like(search)), func.lower(Post.content).like(_like(search))))
    if category and category != "all":
        q = q.filter(Post.category == category)
    if sort_by == "mostReported":
        reports = (
            db.query(Report.target_id, func.count(Report.id).label("n"))
            .filter(Report.type == "post")
            .group_by(Report.target_id)
            .subquery()
        )
        q = q.outerjoin(reports, reports.c.target_id == Post.id).order_by(
            func.coalesce(reports.c.n, 0).desc(), Post.created_at.desc()
        )
    elif sort_by == "oldest":
        q = q.order_by(Post.created_at.asc(), Post.id.asc())
    else:
        q = q.order_by(Post.created_at.desc(), Post.id.desc())
    rows, total = paginate_query(q, page_req)
    ids = [p.id for p in rows]
    authors = author_summaries(db, {p.author_id for p in rows})
    comments = _count_by(db, Comment.post_id, ids)
    reports_by_post = _report_counts(db, "post", ids)
    return [
        {
            "id": p.id,
            "title": p.title,
            "content": p.content[:200],
            "category": p.category,
            "views": p.views,
            "author": authors.get(p.author_id),
            "commentsCount": comments.get(p.id, 0),
            "reportsCount": reports_by_post.get(p.id, 0),
            "createdAt": p.created_at.isoformat() if p.created_at else None,
        }
        for p in rows
    ], total


def remove_post(db: Session, post_id: int) -> int:
    return delete_post(db, None, post_id)


def list_comments(
    db: Session, *, search: str | None, post_id: int | None, page_req: PageRequest
) -> tuple[list[dict[str, Any]], int]:
    q = db.query(Comment)
    if search:
        q = q.filter(func.lower(Comment.content).like(_like(search)))
    if post_id is not None:
        q = q.filter(Comment.post_id == post_id)
    rows, total = paginate_query(q.order_by(Comment.created_at.desc(), Comment.id.desc()), page_req)
    authors = author_summaries(db, {c.author_id for c in rows})
    titles = dict(db.query(Post.id, Post.title).filter(Post.id.in_({c.post_id for c in rows})).all()) if rows else {}
    reports = _report_counts(db, "comment", [c.id for c in rows])
    return [
        {
            "id": c.id,
            "content": c.content,
            "author": authors.get(c.author_id),
            "post": {"id": c.post_id, "title": titles.get(c.post_id)},
            "parentId": c.parent_id,
            "reportsCount": reports.get(c.id, 0),
            "createdAt": c.created_at.isoformat() if c.created_at else None,
        }
        for c in rows
    ], total


def remove_comment(db: Session, comment_id: int) -> int:
    return delete_comment(db, None, comment_id)


# ---- Reports -------------------------------------------------------------------------

def _report_target(db: Session, r: Report) -> dict[str, Any] | None:
    if r.type == "post":
        post = db.get(Post, r.target_id)
        if post is None:
            return None
        author = author_summaries(db, {post.author_id}).get(post.author_id)
        return {"id": post.id, "title": post.title, "content": post.content[:200], "author": author}
    comment = db.get(Comment, r.target_id)
    if comment is None:
        return None
    author = author_summaries(db, {comment.author_id}).get(comment.author_id)
    post = db.get(Post, comment.post_id)
    return {
        "id": comment.id,
        "content": comment.content,
        "author": author,
        "post": {"id": post.id, "title": post.title} if post else None,
    }


def list_reports(db: Session, *, status: str, type_: str, page_req: PageRequest) -> tuple[list[dict[str, Any]], int]:
    q = db.query(Report)
    if status != "all":
        if status not in REPORT_STATUSES:
            raise ValidationError([{"field": "status", "message": "unknown report status", "code": "invalid_choice"}])
        q = q.filter(Report.status == status)
    if type_ != "all":
        q = q.filter(Report.type == type_)
    rows, total = paginate_query(q.order_by(Report.created_at.desc(), Report.id.desc()), page_req)
    reporters = {
        u.id: {"id": u.id, "name": u.name, "email": u.email}
        for u in db.query(User).filter(User.id.in_({r.reporter_id for r in rows})).all()
    } if rows else {}
    out = []
    for r in rows:
        item = serialize_report(r)
        item["reporter"] = reporters.get(r.reporter_id)
        item["target"] = _report_target(db, r)
        out.append(item)
    return out, total


def review_report(db: Session, admin: SessionData, report_id: int, action: str, notes: str | None) -> dict[str, Any]:
    if action not in REPORT_ACTIONS:
        raise ValidationError([{"field": "action", "message": "action must be review, resolve or dismiss", "code": "invalid_choice"}])
    r = db.get(Report, report_id)
    if r is None:
        raise NotFoundError("report not found")
    r.status = REPORT_ACTIONS[action]
    r.reviewed_by = admin["user_id"]
    r.reviewed_at = utcnow()
    if notes:
        r.admin_notes = notes
    notify(
        db,
        user_id=r.reporter_id,
        type_="report",
        title="Your report was reviewed",
        message=f"Report #{r.id} is now {r.status}",
        data={"reportId": r.id, "status": r.status},
        actor_id=admin["user_id"],
    )
    db.commit()
    return serialize_report(r)


def delete_report(db: Session, report_id: int) -> dict[str, Any]:
    r = db.get(Report, report_id)
    if r is None:
        raise NotFoundError("report not found")
    out = serialize_report(r)
    db.delete(r)
    db.commit()
    return out


__all__ = [
    "USER_ACTIONS",
    "REPORT_ACTIONS",
    "dashboard_stats",
    "list_users",
    "apply_user_action",
    "list_posts",
    "remove_post",
    "list_comments",
    "remove_comment",
    "list_reports",
    "review_report",
    "delete_report",
]
