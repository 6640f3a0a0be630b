from __future__ import annotations

from flask import Blueprint, jsonify, request

from .app_authz import require_permission
from .app_sessions import require_session
from .community_service import add_bookmark, list_bookmarks, remove_bookmark
from .db import get_session
from .validation import require_int

bp = Blueprint("bookmarks_api", __name__, url_prefix="/api/bookmarks")


@bp.get("")
@require_permission("bookmark:manage")
def list_bookmarks_route():
    sess = require_session()
    db = get_session()
    try:
        return jsonify({"data": list_bookmarks(db, sess["user_id"])})
    finally:
        db.close()


@bp.post("")
@require_permission("bookmark:manage")
def add_bookmark_route():
    sess = require_session()
    stock_id = require_int(request.get_json(silent=True) or {}, "stockId")
    db = get_session()
    try:
        return jsonify({"data": add_bookmark(db, sess, stock_id)}), 201
    finally:
        db.close()


@bp.delete("")
@require_permission("bookmark:manage")
def remove_bookmark_route():
    sess = require_session()
    stock_id = require_int(request.args, "stockId")
    db = get_session()
    try:
        remove_bookmark(db, sess, stock_id)
        return jsonify({"ok": True})
    finally:
        db.close()
