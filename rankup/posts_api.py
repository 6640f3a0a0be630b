"""Community posts API.

Writes go through `community_service`; ownership checks raise AuthzError and
surface as 403 via the central handlers.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from . import webhooks
from .app_authz import require_login, require_permission
from .app_sessions import require_session
from .audit import log_event
from .community_service import create_post, delete_post, list_posts, update_post, view_post
from .db import get_session
from .http_limits import has_search_term, rate_limited
from .pagination import make_page_response, parse_page_params
from .validation import POST_CATEGORY_FILTERS, validate_post

bp = Blueprint("posts_api", __name__, url_prefix="/api/posts")


@bp.get("")
@rate_limited("search", when=has_search_term)
def list_posts_route():
    page_req = parse_page_params(request.args, default_limit=10, max_limit=50)
    category = request.args.get("category") or "all"
    if category not in POST_CATEGORY_FILTERS:
        category = "all"
    db = get_session()
    try:
        items, total = list_posts(
            db,
            category=category,
            search=(request.args.get("search") or "").strip() or None,
            sort_by=request.args.get("sortBy") or "createdAt",
            sort_order="asc" if request.args.get("sortOrder") == "asc" else "desc",
            page_req=page_req,
        )
        return jsonify(make_page_response(items, page_req, total))
    finally:
        db.close()


@bp.post("")
@require_permission("post:create")
def create_post_route():
    sess = require_session()
    data = validate_post(request.get_json(silent=True) or {})
    db = get_session()
    try:
        post = create_post(db, sess, data)
    finally:
        db.close()
    log_event("post.created", post_id=post["id"])
    webhooks.send("post.created", {"postId": post["id"], "authorId": post["authorId"], "title": post["title"]})
    return jsonify({"data": post}), 201


@bp.get("/<int:post_id>")
def get_post(post_id: int):
    db = get_session()
    try:
        return jsonify({"data": view_post(db, post_id)})
    finally:
        db.close()


@bp.patch("/<int:post_id>")
@require_login
def update_post_route(post_id: int):
    sess = require_session()
    changes = validate_post(request.get_json(silent=True) or {}, partial=True)
    db = get_session()
    try:
        post = update_post(db, sess, post_id, changes)
    finally:
        db.close()
    log_event("post.updated", post_id=post_id, fields=sorted(changes))
    webhooks.send("post.updated", {"postId": post_id})
    return jsonify({"data": post})


@bp.delete("/<int:post_id>")
@require_login
def delete_post_route(post_id: int):
    sess = require_session()
    db = get_session()
    try:
        deleted_comments = delete_post(db, sess, post_id)
    finally:
        db.close()
    log_event("post.deleted", post_id=post_id, deleted_comments=deleted_comments)
    webhooks.send("post.deleted", {"postId": post_id})
    return jsonify({"ok": True, "deletedComments": deleted_comments})
