"""Account self-service API: profile, password, GDPR export and erasure."""

from __future__ import annotations

import csv
import logging
from datetime import UTC, datetime
from io import StringIO

from flask import Blueprint, Response, jsonify, request, session

from . import webhooks
from .app_authz import require_permission
from .app_sessions import clear_login, require_session
from .audit import log_event
from .cache import USER_PROFILE, user_cache
from .db import get_session
from .user_service import (
    change_password,
    delete_account,
    export_activity_rows,
    export_user_data,
    get_user,
    invalidate_profile,
    profile_cache_key,
    serialize_user,
    update_profile,
)
from .validation import validate_new_password, validate_profile

logger = logging.getLogger(__name__)

bp = Blueprint("user_api", __name__, url_prefix="/api/user")


@bp.get("/profile")
@require_permission("profile:manage")
def get_profile():
    sess = require_session()

    def fetch():
        db = get_session()
        try:
            return serialize_user(get_user(db, sess["user_id"]))
        finally:
            db.close()

    return jsonify({"data": user_cache.get_or_set(profile_cache_key(sess["user_id"]), fetch, USER_PROFILE)})


@bp.patch("/profile")
@require_permission("profile:manage")
def patch_profile():
    sess = require_session()
    changes = validate_profile(request.get_json(silent=True) or {})
    db = get_session()
    try:
        profile = update_profile(db, sess["user_id"], changes)
    finally:
        db.close()
    invalidate_profile(sess["user_id"])
    log_event("user.profile_updated", fields=sorted(changes))
    webhooks.send("user.updated", {"userId": sess["user_id"], "fields": sorted(changes)})
    return jsonify({"data": profile, "message": "Profile updated."})


@bp.post("/profile/change-password")
@require_permission("profile:manage")
def change_password_route():
    sess = require_session()
    data = request.get_json(silent=True) or {}
    new = validate_new_password(
        data.get("newPassword"), data.get("confirmPassword"), field="newPassword", check_confirm=True
    )
    db = get_session()
    try:
        revoked = change_password(
            db, sess["user_id"], data.get("currentPassword") or "", new, session_id=sess["session_id"]
        )
    finally:
        db.close()
    log_event("user.password_changed", sessions_revoked=revoked)
    return jsonify({"message": "Password changed."})


@bp.get("/export")
@require_permission("profile:manage")
def export_data():
    sess = require_session()
    fmt = (request.args.get("format") or "json").lower()
    db = get_session()
    try:
        data = export_user_data(db, sess["user_id"])
    finally:
        db.close()
    logger.info("User data exported user_id=%s format=%s", sess["user_id"], fmt)
    log_event("user.data_exported", format=fmt)
    ts = datetime.now(UTC).strftime("%Y%m%d_%H%M")
    if fmt == "csv":
        buf = StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL)
        for row in export_activity_rows(data):
            writer.writerow(row)
        return Response(
            buf.getvalue(),
            mimetype="text/csv; charset=utf-8",
            headers={
                "Cache-Control": "no-store",
                "Content-Disposition": f'attachment; filename="rankup_data_{sess["user_id"]}_{ts}.csv"',
            },
        )
    resp = jsonify(data)
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Content-Disposition"] = f'attachment; filename="rankup_data_{sess["user_id"]}_{ts}.json"'
    return resp


@bp.delete("/delete")
@require_permission("profile:manage")
def delete_account_route():
    sess = require_session()
    data = request.get_json(silent=True) or {}
    logger.warning("Account deletion requested user_id=%s", sess["user_id"])
    db = get_session()
    try:
        counts = delete_account(db, sess["user_id"], data.get("confirmation"))
    finally:
        db.close()
    clear_login(session)
    invalidate_profile(sess["user_id"])
    log_event("user.deleted", actor_user_id=sess["user_id"], actor_role=sess["role"], **counts)
    webhooks.send("user.deleted", {"userId": sess["user_id"]})
    return jsonify({"success": True, "message": "Account deleted."})
