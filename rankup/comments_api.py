from __future__ import annotations

from flask import Blueprint, jsonify, request

from . import webhooks
from .app_authz import require_login, require_permission
from .app_sessions import require_session
from .audit import log_event
from .community_service import comment_tree, create_comment, delete_comment, update_comment
from .db import get_session
from .validation import require_int, require_str, validate_comment

bp = Blueprint("comments_api", __name__, url_prefix="/api/comments")


@bp.get("")
def list_comments():
    post_id = require_int(request.args, "postId")
    db = get_session()
    try:
        return jsonify(comment_tree(db, post_id))
    finally:
        db.close()


@bp.post("")
@require_permission("comment:create")
def create_comment_route():
    sess = require_session()
    data = validate_comment(request.get_json(silent=True) or {})
    db = get_session()
    try:
        comment = create_comment(db, sess, data)
    finally:
        db.close()
    log_event("comment.created", comment_id=comment["id"], post_id=comment["postId"])
    webhooks.send(
        "comment.created",
        {"commentId": comment["id"], "postId": comment["postId"], "authorId": comment["authorId"]},
    )
    return jsonify({"data": comment}), 201


@bp.patch("/<int:comment_id>")
@require_login
def update_comment_route(comment_id: int):
    sess = require_session()
    content = require_str(request.get_json(silent=True) or {}, "content", min_len=1, max_len=500)
    db = get_session()
    try:
        comment = update_comment(db, sess, comment_id, content)
    finally:
        db.close()
    return jsonify({"data": comment})


@bp.delete("/<int:comment_id>")
@require_login
def delete_comment_route(comment_id: int):
    sess = require_session()
    db = get_session()
    try:
        removed = delete_comment(db, sess, comment_id)
    finally:
        db.close()
    log_event("comment.deleted", comment_id=comment_id, removed=removed)
    return jsonify({"ok": True, "deleted": removed})
