from __future__ import annotations

from flask import Blueprint, jsonify, request

from .app_authz import require_login
from .app_sessions import require_session
from .db import get_session
from .errors import ValidationError
from .notification_service import delete_notification, list_notifications, mark_all_read, mark_read
from .validation import coerce_bool, coerce_int, require_int

bp = Blueprint("notifications_api", __name__, url_prefix="/api/notifications")


@bp.get("")
@require_login
def list_route():
    sess = require_session()
    db = get_session()
    try:
        return jsonify(
            list_notifications(
                db,
                sess["user_id"],
                unread_only=coerce_bool(request.args.get("unreadOnly")),
                limit=coerce_int(request.args.get("limit"), 50, minimum=1, maximum=100),
            )
        )
    finally:
        db.close()


@bp.patch("")
@require_login
def update_route():
    sess = require_session()
    data = request.get_json(silent=True) or {}
    db = get_session()
    try:
        if data.get("markAllAsRead") is True:
            return jsonify({"ok": True, "updated": mark_all_read(db, sess["user_id"])})
        if data.get("notificationId") not in (None, ""):
            mark_read(db, sess["user_id"], require_int(data, "notificationId"))
            return jsonify({"ok": True, "updated": 1})
        raise ValidationError("notificationId or markAllAsRead is required")
    finally:
        db.close()


@bp.delete("")
@require_login
def delete_route():
    sess = require_session()
    notification_id = require_int(request.args, "id")
    db = get_session()
    try:
        delete_notification(db, sess["user_id"], notification_id)
        return jsonify({"ok": True})
    finally:
        db.close()
