"""Community service layer: posts, comments, likes, bookmarks, reports.

Service signatures take the caller's SessionData explicitly for ownership
checks; commits happen here so handlers stay thin.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .app_authz import ensure_owner_or_admin
from .app_sessions import SessionData
from .errors import ConflictError, NotFoundError, ValidationError, field_error
from .market_service import serialize_stock
from .models import Bookmark, Comment, Like, Post, Report, Stock, User
from .notification_service import notify
from .pagination import PageRequest, paginate_query

POST_SORT_FIELDS = ("createdAt", "views", "likes")


def _iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def author_summaries(db: Session, user_ids: set[int]) -> dict[int, dict[str, Any]]:
    if not user_ids:
        return {}
    rows = db.query(User.id, User.name, User.image).filter(User.id.in_(user_ids)).all()
    return {uid: {"id": uid, "name": name, "image": image} for uid, name, image in rows}


def _counts(db: Session, model, post_ids: list[int]) -> dict[int, int]:
    if not post_ids:
        return {}
    rows = db.query(model.post_id, func.count(model.id)).filter(model.post_id.in_(post_ids)).group_by(model.post_id).all()
    return {pid: int(c) for pid, c in rows}


def serialize_posts(db: Session, posts: list[Post]) -> list[dict[str, Any]]:
    ids = [p.id for p in posts]
    comments = _counts(db, Comment, ids)
    likes = _counts(db, Like, ids)
    authors = author_summaries(db, {p.author_id for p in posts})
    return [
        {
            "id": p.id,
            "title": p.title,
            "content": p.content,
            "category": p.category,
            "tags": p.tags or [],
            "views": p.views,
            "isPopular": p.is_popular,
            "isPinned": p.is_pinned,
            "authorId": p.author_id,
            "author": authors.get(p.author_id),
            "stockId": p.stock_id,
            "createdAt": _iso(p.created_at),
            "updatedAt": _iso(p.updated_at),
            "_count": {"comments": comments.get(p.id, 0), "likes": likes.get(p.id, 0)},
        }
        for p in posts
    ]


def _get_post(db: Session, post_id: int) -> Post:
    post = db.get(Post, post_id)
    if post is None:
        raise NotFoundError("post not found")
    return post


# ---- Posts ---------------------------------------------------------------------------

def list_posts(
    db: Session,
    *,
    category: str | None,
    search: str | None,
    sort_by: str,
    sort_order: str,
    page_req: PageRequest,
) -> tuple[list[dict[str, Any]], int]:
    if sort_by not in POST_SORT_FIELDS:
        raise field_error("sortBy", "sortBy must be one of: createdAt, views, likes", "invalid_choice")
    q = db.query(Post)
    if category and category != "all":
        q = q.filter(Post.category == category)
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(or_(func.lower(Post.title).like(like), func.lower(Post.content).like(like)))
    if sort_by == "likes":
        like_count = (
            db.query(Like.post_id, func.count(Like.id).label("n")).group_by(Like.post_id).subquery()
        )
        q = q.outerjoin(like_count, like_count.c.post_id == Post.id)
        col = func.coalesce(like_count.c.n, 0)
    elif sort_by == "views":
        col = Post.views
    else:
        col = Post.created_at
    q = q.order_by(col.desc() if sort_order == "desc" else col.asc(), Post.id.desc() if sort_order == "desc" else Post.id.asc())
    rows, total = paginate_query(q, page_req)
    return serialize_posts(db, rows), total


def create_post(db: Session, sess: SessionData, data: dict[str, Any]) -> dict[str, Any]:
    stock_id = data.get("stock_id")
    if stock_id is not None and db.get(Stock, stock_id) is None:
        raise field_error("stockId", "stock does not exist", "not_found")
    post = Post(
        title=data["title"],
        content=data["content"],
        category=data["category"],
        tags=data.get("tags") or [],
        stock_id=stock_id,
        author_id=sess["user_id"],
        views=0,
    )
    db.add(post)
    db.commit()
    return serialize_posts(db, [post])[0]


def view_post(db: Session, post_id: int) -> dict[str, Any]:
    post = _get_post(db, post_id)
    post.views = (post.views or 0) + 1
    db.commit()
    return serialize_posts(db, [post])[0]


def update_post(db: Session, sess: SessionData, post_id: int, data: dict[str, Any]) -> dict[str, Any]:
    post = _get_post(db, post_id)
    ensure_owner_or_admin(post.author_id, sess)
    if not data:
        raise ValidationError("no updatable fields supplied")
    if data.get("stock_id") is not None and db.get(Stock, data["stock_id"]) is None:
        raise field_error("stockId", "stock does not exist", "not_found")
    for field, value in data.items():
        setattr(post, field, value)
    db.commit()
    return serialize_posts(db, [post])[0]


def delete_post_rows(db: Session, post: Post) -> int:
    """Delete a post with its comments, likes and reports; returns deleted comment count."""
    comment_ids = [cid for (cid,) in db.query(Comment.id).filter(Comment.post_id == post.id).all()]
    if comment_ids:
        db.query(Report).filter(Report.type == "comment", Report.target_id.in_(comment_ids)).delete(synchronize_session=False)
    # Replies reference parents; clear links before the bulk delete
    db.query(Comment).filter(Comment.post_id == post.id).update({Comment.parent_id: None}, synchronize_session=False)
    deleted = db.query(Comment).filter(Comment.post_id == post.id).delete(synchronize_session=False)
    db.query(Like).filter(Like.post_id == post.id).delete(synchronize_session=False)
    db.query(Report).filter(Report.type == "post", Report.target_id == post.id).delete(synchronize_session=False)
    db.delete(post)
    return int(deleted)


def delete_post(db: Session, sess: SessionData | None, post_id: int) -> int:
    post = _get_post(db, post_id)
    if sess is not None:
        ensure_owner_or_admin(post.author_id, sess)
    deleted = delete_post_rows(db, post)
    db.commit()
    return deleted


# ---- Comments ------------------------------------------------------------------------

def serialize_comment(c: Comment, authors: dict[int, dict[str, Any]] | None = None) -> dict[str, Any]:
    return {
        "id": c.id,
        "content": c.content,
        "authorId": c.author_id,
        "author": (authors or {}).get(c.author_id),
        "postId": c.post_id,
        "parentId": c.parent_id,
        "createdAt": _iso(c.created_at),
        "updatedAt": _iso(c.updated_at),
    }


def comment_tree(db: Session, post_id: int) -> dict[str, Any]:
    rows = (
        db.query(Comment)
        .filter(Comment.post_id == post_id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .all()
    )
    authors = author_summaries(db, {c.author_id for c in rows})
    nodes = {c.id: {**serialize_comment(c, authors), "replies": []} for c in rows}
    roots = []
    for c in rows:
        node = nodes[c.id]
        if c.parent_id is None:
            roots.append(node)
        elif c.parent_id in nodes:
            nodes[c.parent_id]["replies"].append(node)
    return {"data": roots, "total": len(rows)}


def create_comment(db: Session, sess: SessionData, data: dict[str, Any]) -> dict[str, Any]:
    post = _get_post(db, data["post_id"])
    parent = None
    if data.get("parent_id") is not None:
        parent = db.get(Comment, data["parent_id"])
        if parent is None or parent.post_id != post.id:
            raise field_error("parentId", "parent comment must exist in the same post", "invalid_parent")
    comment = Comment(content=data["content"], author_id=sess["user_id"], post_id=post.id, parent_id=data.get("parent_id"))
    db.add(comment)
    db.flush()
    link = f"/stockboard/{post.id}#comment-{comment.id}"
    if parent is not None:
        notify(
            db,
            user_id=parent.author_id,
            type_="reply",
            title="New reply",
            message=data["content"][:100],
            link=link,
            data={"postId": post.id, "commentId": comment.id},
            actor_id=sess["user_id"],
        )
    else:
        notify(
            db,
            user_id=post.author_id,
            type_="comment",
            title="New comment on your post",
            message=data["content"][:100],
            link=link,
            data={"postId": post.id, "commentId": comment.id},
            actor_id=sess["user_id"],
        )
    db.commit()
    return serialize_comment(comment, author_summaries(db, {comment.author_id}))


def _get_comment(db: Session, comment_id: int) -> Comment:
    c = db.get(Comment, comment_id)
    if c is None:
        raise NotFoundError("comment not found")
    return c


def update_comment(db: Session, sess: SessionData, comment_id: int, content: str) -> dict[str, Any]:
    c = _get_comment(db, comment_id)
    ensure_owner_or_admin(c.author_id, sess)
    c.content = content
    db.commit()
    return serialize_comment(c)


def _subtree_ids(db: Session, root: Comment) -> list[int]:
    children: dict[int, list[int]] = defaultdict(list)
    for cid, pid in db.query(Comment.id, Comment.parent_id).filter(Comment.post_id == root.post_id).all():
        if pid is not None:
            children[pid].append(cid)
    out, stack = [], [root.id]
    while stack:
        cid = stack.pop()
        out.append(cid)
        stack.extend(children.get(cid, []))
    return out


def delete_comment(db: Session, sess: SessionData | None, comment_id: int) -> int:
    """Delete a comment and its whole reply subtree; returns the number removed."""
    c = _get_comment(db, comment_id)
    if sess is not None:
        ensure_owner_or_admin(c.author_id, sess)
    removed = delete_comment_rows(db, c)
    db.commit()
    return removed


def delete_comment_rows(db: Session, comment: Comment) -> int:
    ids = _subtree_ids(db, comment)
    db.query(Report).filter(Report.type == "comment", Report.target_id.in_(ids)).delete(synchronize_session=False)
    db.query(Comment).filter(Comment.id.in_(ids)).update({Comment.parent_id: None}, synchronize_session=False)
    db.query(Comment).filter(Comment.id.in_(ids)).delete(synchronize_session=False)
    return len(ids)


# ---- Likes ---------------------------------------------------------------------------

def list_likes(db: Session, *, post_id: int | None, user_id: int | None) -> dict[str, Any]:
    q = db.query(Like)
    if post_id is not None:
        q = q.filter(Like.post_id == post_id)
    if user_id is not None:
        q = q.filter(Like.user_id == user_id)
    rows = q.order_by(Like.created_at.desc()).all()
    return {
        "data": [{"id": lk.id, "userId": lk.user_id, "postId": lk.post_id, "createdAt": _iso(lk.created_at)} for lk in rows],
        "count": len(rows),
    }


def like_post(db: Session, sess: SessionData, post_id: int) -> dict[str, Any]:
    post = _get_post(db, post_id)
    exists = db.query(Like).filter(Like.user_id == sess["user_id"], Like.post_id == post_id).first()
    if exists:
        raise ConflictError("already_liked")
    like = Like(user_id=sess["user_id"], post_id=post_id)
    db.add(like)
    notify(
        db,
        user_id=post.author_id,
        type_="like",
        title="Someone liked your post",
        message=post.title[:100],
        link=f"/stockboard/{post.id}",
        data={"postId": post.id},
        actor_id=sess["user_id"],
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("already_liked") from None
    return {"id": like.id, "userId": like.user_id, "postId": like.post_id, "createdAt": _iso(like.created_at)}


def unlike_post(db: Session, sess: SessionData, post_id: int) -> None:
    like = db.query(Like).filter(Like.user_id == sess["user_id"], Like.post_id == post_id).first()
    if like is None:
        raise NotFoundError("like not found")
    db.delete(like)
    db.commit()


# ---- Bookmarks -----------------------------------------------------------------------

def list_bookmarks(db: Session, user_id: int) -> list[dict[str, Any]]:
    rows = (
        db.query(Bookmark, Stock)
        .join(Stock, Stock.id == Bookmark.stock_id)
        .filter(Bookmark.user_id == user_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
        .all()
    )
    return [
        {"id": b.id, "stockId": b.stock_id, "createdAt": _iso(b.created_at), "stock": serialize_stock(s)}
        for b, s in rows
    ]


def add_bookmark(db: Session, sess: SessionData, stock_id: int) -> dict[str, Any]:
    stock = db.get(Stock, stock_id)
    if stock is None:
        raise NotFoundError("stock not found")
    if db.query(Bookmark).filter(Bookmark.user_id == sess["user_id"], Bookmark.stock_id == stock_id).first():
        raise ConflictError("already_bookmarked")
    b = Bookmark(user_id=sess["user_id"], stock_id=stock_id)
    db.add(b)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("already_bookmarked") from None
    return {"id": b.id, "stockId": b.stock_id, "createdAt": _iso(b.created_at), "stock": serialize_stock(stock)}


def remove_bookmark(db: Session, sess: SessionData, stock_id: int) -> None:
    b = db.query(Bookmark).filter(Bookmark.user_id == sess["user_id"], Bookmark.stock_id == stock_id).first()
    if b is None:
        raise NotFoundError("bookmark not found")
    db.delete(b)
    db.commit()


# ---- Reports -------------------------------------------------------------------------

def serialize_report(r: Report) -> dict[str, Any]:
    return {
        "id": r.id,
        "type": r.type,
        "targetId": r.target_id,
        "reporterId": r.reporter_id,
        "reason": r.reason,
        "description": r.description,
        "status": r.status,
        "reviewedBy": r.reviewed_by,
        "reviewedAt": _iso(r.reviewed_at),
        "adminNotes": r.admin_notes,
        "createdAt": _iso(r.created_at),
    }


def create_report(db: Session, sess: SessionData, data: dict[str, Any]) -> dict[str, Any]:
    model = Post if data["type"] == "post" else Comment
    if db.get(model, data["target_id"]) is None:
        raise NotFoundError(f"{data['type']} not found")
    dup = (
        db.query(Report)
        .filter(Report.reporter_id == sess["user_id"], Report.type == data["type"], Report.target_id == data["target_id"])
        .first()
    )
    if dup:
        raise ConflictError("already_reported")
    r = Report(
        type=data["type"],
        target_id=data["target_id"],
        reporter_id=sess["user_id"],
        reason=data["reason"],
        description=data.get("description"),
        status="pending",
    )
    db.add(r)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("already_reported") from None
    return serialize_report(r)


def list_own_reports(db: Session, user_id: int) -> list[dict[str, Any]]:
    rows = db.query(Report).filter(Report.reporter_id == user_id).order_by(Report.created_at.desc(), Report.id.desc()).all()
    return [serialize_report(r) for r in rows]


__all__ = [
    "POST_SORT_FIELDS",
    "author_summaries",
    "serialize_posts",
    "list_posts",
    "create_post",
    "view_post",
    "update_post",
    "delete_post",
    "delete_post_rows",
    "comment_tree",
    "create_comment",
    "update_comment",
    "delete_comment",
    "delete_comment_rows",
    "list_likes",
    "like_post",
    "unlike_post",
    "list_bookmarks",
    "add_bookmark",
    "remove_bookmark",
    "serialize_report",
    "create_report",
    "list_own_reports",
]
