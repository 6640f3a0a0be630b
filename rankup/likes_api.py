from __future__ import annotations

from flask import Blueprint, jsonify, request

from .app_authz import require_permission
from .app_sessions import require_session
from .community_service import like_post, list_likes, unlike_post
from .db import get_session
from .validation import require_int

bp = Blueprint("likes_api", __name__, url_prefix="/api/likes")


def _optional_id(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    return require_int(request.args, name)


@bp.get("")
def list_likes_route():
    db = get_session()
    try:
        return jsonify(list_likes(db, post_id=_optional_id("postId"), user_id=_optional_id("userId")))
    finally:
        db.close()


@bp.post("")
@require_permission("like:create")
def like():
    sess = require_session()
    post_id = require_int(request.get_json(silent=True) or {}, "postId")
    db = get_session()
    try:
        return jsonify({"data": like_post(db, sess, post_id)}), 201
    finally:
        db.close()


@bp.delete("")
@require_permission("like:create")
def unlike():
    sess = require_session()
    post_id = require_int(request.args, "postId")
    db = get_session()
    try:
        unlike_post(db, sess, post_id)
        return jsonify({"ok": True})
    finally:
        db.close()
