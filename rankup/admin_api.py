"""Admin API: moderation, audit log, support logs, cache and rate-limit tools.

Every route is behind `require_admin`; each mutation writes an audit event
after the service has committed.
"""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify, request

from . import admin_service
from .app_authz import require_admin
from .app_sessions import require_session
from .audit import AuditQueryFilters, AuditRepo, log_event, serialize_event
from .cache import NAMESPACES, Cache
from .db import get_session
from .errors import ValidationError, field_error
from .http_limits import LIMITS, block_identifier, reset_limit, unblock_identifier
from .logging_setup import recent_logs
from .pagination import make_page_response, parse_page_params
from .user_service import invalidate_profile
from .validation import coerce_int, optional_str, require_choice, require_int, require_str

bp = Blueprint("admin_api", __name__, url_prefix="/api/admin")


def _opt_int(args, name: str) -> int | None:
    if args.get(name) in (None, ""):
        return None
    return require_int(args, name)


@bp.get("/stats")
@require_admin
def stats():
    db = get_session()
    try:
        return jsonify({"data": admin_service.dashboard_stats(db)})
    finally:
        db.close()


# ---- Users ---------------------------------------------------------------------------


@bp.get("/users")
@require_admin
def list_users():
    page_req = parse_page_params(request.args)
    db = get_session()
    try:
        items, total = admin_service.list_users(
            db,
            search=(request.args.get("search") or "").strip() or None,
            status=request.args.get("status") or "all",
            page_req=page_req,
        )
        return jsonify(make_page_response(items, page_req, total))
    finally:
        db.close()


@bp.patch("/users")
@require_admin
def update_user():
    admin = require_session()
    data = request.get_json(silent=True) or {}
    user_id = require_int(data, "userId")
    action = require_choice(data, "action", admin_service.USER_ACTIONS)
    db = get_session()
    try:
        user = admin_service.apply_user_action(db, admin, user_id, action)
    finally:
        db.close()
    invalidate_profile(user_id)
    log_event("admin.user_" + action, target_user_id=user_id)
    return jsonify({"message": "User updated.", "data": user})


# ---- Posts & comments ----------------------------------------------------------------


@bp.get("/posts")
@require_admin
def list_posts():
    page_req = parse_page_params(request.args)
    db = get_session()
    try:
        items, total = admin_service.list_posts(
            db,
            search=(request.args.get("search") or "").strip() or None,
            category=request.args.get("category") or None,
            sort_by=request.args.get("sortBy") or "newest",
            page_req=page_req,
        )
        return jsonify(make_page_response(items, page_req, total))
    finally:
        db.close()


@bp.delete("/posts")
@require_admin
def delete_post():
    data = request.get_json(silent=True) or {}
    post_id = require_int(data, "postId")
    reason = optional_str(data, "reason", max_len=500)
    db = get_session()
    try:
        deleted_comments = admin_service.remove_post(db, post_id)
    finally:
        db.close()
    log_event("admin.post_deleted", post_id=post_id, reason=reason, deleted_comments=deleted_comments)
    return jsonify({"message": "Post deleted.", "deletedComments": deleted_comments})


@bp.get("/comments")
@require_admin
def list_comments():
    page_req = parse_page_params(request.args)
    db = get_session()
    try:
        items, total = admin_service.list_comments(
            db,
            search=(request.args.get("search") or "").strip() or None,
            post_id=_opt_int(request.args, "postId"),
            page_req=page_req,
        )
        return jsonify(make_page_response(items, page_req, total))
    finally:
        db.close()


@bp.delete("/comments")
@require_admin
def delete_comment():
    data = request.get_json(silent=True) or {}
    comment_id = require_int(data, "commentId")
    reason = optional_str(data, "reason", max_len=500)
    db = get_session()
    try:
        removed = admin_service.remove_comment(db, comment_id)
    finally:
        db.close()
    log_event("admin.comment_deleted", comment_id=comment_id, reason=reason, removed=removed)
    return jsonify({"message": "Comment deleted.", "deleted": removed})


# ---- Reports -------------------------------------------------------------------------


@bp.get("/reports")
@require_admin
def list_reports():
    page_req = parse_page_params(request.args)
    db = get_session()
    try:
        items, total = admin_service.list_reports(
            db,
            status=request.args.get("status") or "all",
            type_=request.args.get("type") or "all",
            page_req=page_req,
        )
        return jsonify(make_page_response(items, page_req, total))
    finally:
        db.close()


@bp.patch("/reports")
@require_admin
def update_report():
    admin = require_session()
    data = request.get_json(silent=True) or {}
    report_id = require_int(data, "reportId")
    action = require_choice(data, "action", tuple(admin_service.REPORT_ACTIONS))
    notes = optional_str(data, "notes", max_len=2000)
    db = get_session()
    try:
        report = admin_service.review_report(db, admin, report_id, action, notes)
    finally:
        db.close()
    log_event("admin.report_" + action, report_id=report_id)
    return jsonify({"message": "Report updated.", "data": report})


@bp.delete("/reports")
@require_admin
def delete_report():
    report_id = require_int(request.args, "id")
    db = get_session()
    try:
        report = admin_service.delete_report(db, report_id)
    finally:
        db.close()
    log_event("admin.report_deleted", report_id=report_id)
    return jsonify({"message": "Report deleted.", "data": report})


# ---- Audit & support -----------------------------------------------------------------


def _parse_ts(name: str) -> datetime | None:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise field_error(name, f"{name} must be an ISO-8601 timestamp", "invalid_timestamp") from None


@bp.get("/audit")
@require_admin
def list_audit_events():
    page_req = parse_page_params(request.args, default_limit=50, max_limit=200)
    rows, total = AuditRepo().query(
        AuditQueryFilters(
            event=request.args.get("event") or None,
            actor_user_id=_opt_int(request.args, "actorUserId"),
            ts_from=_parse_ts("from"),
            ts_to=_parse_ts("to"),
        ),
        page=page_req["page"],
        size=page_req["limit"],
    )
    return jsonify(make_page_response([serialize_event(r) for r in rows], page_req, total))


@bp.get("/support/logs")
@require_admin
def support_logs():
    limit = coerce_int(request.args.get("limit"), 100, minimum=1, maximum=500)
    return jsonify({"data": recent_logs(limit=limit, level=request.args.get("level") or None)})


# ---- Cache & rate limits -------------------------------------------------------------


@bp.post("/cache/invalidate")
@require_admin
def invalidate_cache():
    data = request.get_json(silent=True) or {}
    namespace = require_choice(data, "namespace", NAMESPACES)
    pattern = optional_str(data, "pattern", max_len=200) or "*"
    removed = Cache(namespace).clear(pattern)
    log_event("admin.cache_invalidated", namespace=namespace, pattern=pattern, removed=removed)
    return jsonify({"ok": True, "removed": removed})


@bp.post("/rate-limits/reset")
@require_admin
def reset_rate_limit():
    data = request.get_json(silent=True) or {}
    name = require_choice(data, "limit", tuple(LIMITS))
    ident = require_str(data, "identifier", max_len=200)
    reset_limit(name, ident)
    log_event("admin.rate_limit_reset", limit=name, identifier=ident)
    return jsonify({"ok": True})


@bp.post("/rate-limits/block")
@require_admin
def block():
    data = request.get_json(silent=True) or {}
    ident = require_str(data, "identifier", max_len=200)
    seconds = coerce_int(data.get("seconds"), 3600, minimum=1, maximum=30 * 24 * 3600)
    block_identifier(ident, seconds)
    log_event("admin.identifier_blocked", identifier=ident, seconds=seconds)
    return jsonify({"ok": True, "identifier": ident, "seconds": seconds})


@bp.post("/rate-limits/unblock")
@require_admin
def unblock():
    data = request.get_json(silent=True) or {}
    ident = require_str(data, "identifier", max_len=200)
    if not unblock_identifier(ident):
        raise ValidationError([{"field": "identifier", "message": "identifier is not blocked", "code": "not_blocked"}])
    log_event("admin.identifier_unblocked", identifier=ident)
    return jsonify({"ok": True})
