from __future__ import annotations

from flask import Blueprint, jsonify, request

from .app_authz import require_login, require_permission
from .app_sessions import require_session
from .audit import log_event
from .community_service import create_report, list_own_reports
from .db import get_session
from .validation import validate_report

bp = Blueprint("reports_api", __name__, url_prefix="/api/reports")


@bp.post("")
@require_permission("report:create")
def create_report_route():
    sess = require_session()
    data = validate_report(request.get_json(silent=True) or {})
    db = get_session()
    try:
        report = create_report(db, sess, data)
    finally:
        db.close()
    log_event("report.created", report_id=report["id"], type=report["type"], target_id=report["targetId"])
    return jsonify({"data": report, "message": "Report submitted."}), 201


@bp.get("")
@require_login
def list_reports_route():
    sess = require_session()
    db = get_session()
    try:
        return jsonify({"data": list_own_reports(db, sess["user_id"])})
    finally:
        db.close()
