"""Content-based post recommendations.

Scores candidate posts against the categories a user has engaged with and the
stocks they bookmark; anonymous callers get the popular list.
"""
from __future__ import annotations

from collections import Counter
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .community_service import serialize_posts
from .models import Bookmark, Like, Post

CATEGORY_WEIGHT = 3.0
BOOKMARK_WEIGHT = 2.0
CANDIDATE_POOL = 500


def _like_counts(db: Session, post_ids: list[int]) -> dict[int, int]:
    if not post_ids:
        return {}
    rows = db.query(Like.post_id, func.count(Like.id)).filter(Like.post_id.in_(post_ids)).group_by(Like.post_id).all()
    return {pid: int(n) for pid, n in rows}


def popular_posts(db: Session, limit: int) -> list[dict[str, Any]]:
    posts = db.query(Post).order_by(Post.created_at.desc()).limit(CANDIDATE_POOL).all()
    likes = _like_counts(db, [p.id for p in posts])
    posts.sort(key=lambda p: (likes.get(p.id, 0), p.views or 0), reverse=True)
    return serialize_posts(db, posts[:limit])


def score_post(post: Post, likes: int, categories: Counter, bookmarked: set[int]) -> float:
    score = CATEGORY_WEIGHT * categories.get(post.category, 0)
    if post.stock_id is not None and post.stock_id in bookmarked:
        score += BOOKMARK_WEIGHT
    return score + likes / 10 + (post.views or 0) / 100


def recommend_for_user(db: Session, user_id: int, limit: int) -> list[dict[str, Any]]:
    liked_ids = {pid for (pid,) in db.query(Like.post_id).filter(Like.user_id == user_id).all()}
    engaged_filter = Post.author_id == user_id
    if liked_ids:
        engaged_filter = or_(engaged_filter, Post.id.in_(liked_ids))
    engaged = db.query(Post.category).filter(engaged_filter)
    categories = Counter(cat for (cat,) in engaged.all())
    bookmarked = {sid for (sid,) in db.query(Bookmark.stock_id).filter(Bookmark.user_id == user_id).all()}
    q = db.query(Post).filter(Post.author_id != user_id)
    if liked_ids:
        q = q.filter(Post.id.notin_(liked_ids))
    candidates = q.order_by(Post.created_at.desc()).limit(CANDIDATE_POOL).all()
    likes = _like_counts(db, [p.id for p in candidates])
    scored = [(score_post(p, likes.get(p.id, 0), categories, bookmarked), p) for p in candidates]
    # Stable sort keeps newest-first among equal scores
    scored.sort(key=lambda sp: sp[0], reverse=True)
    picked = [p for _, p in scored[:limit]]
    out = serialize_posts(db, picked)
    for item, (score, _) in zip(out, scored[:limit]):
        item["score"] = round(score, 3)
    return out


__all__ = ["popular_posts", "score_post", "recommend_for_user"]
