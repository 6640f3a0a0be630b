"""A/B test assignment and result tracking.

Anonymous visitors are keyed by an ``anon_id`` kept in the signed cookie
session so their variant is stable across requests.
"""

from __future__ import annotations

import uuid

from flask import Blueprint, current_app, jsonify, request, session

from .app_authz import require_admin
from .app_sessions import get_session as get_auth_session
from .db import get_session
from .errors import NotFoundError, field_error
from .experiments import ExperimentManager
from .validation import require_str

bp = Blueprint("ab_test_api", __name__, url_prefix="/api/ab-test")


def _manager() -> ExperimentManager:
    return current_app.experiments  # type: ignore[attr-defined]


def _user_key() -> tuple[str, str | None, str | None]:
    sess = get_auth_session()
    if sess is not None:
        return str(sess["user_id"]), sess["role"], sess["plan"]
    anon = session.get("anon_id")
    if not anon:
        anon = uuid.uuid4().hex
        session["anon_id"] = anon
    return f"anon:{anon}", "guest", "free"


@bp.get("")
def assignment():
    mgr = _manager()
    test_id = request.args.get("testId")
    if not test_id:
        return jsonify(
            {
                "data": [
                    {"id": t["id"], "name": t["name"], "description": t["description"], "status": t["status"]}
                    for t in mgr.active_tests()
                ]
            }
        )
    user_key, role, plan = _user_key()
    variant = mgr.assign_variant(test_id, user_key, role=role, plan=plan)
    if variant is None:
        raise NotFoundError("test not found or not running")
    return jsonify({"testId": test_id, "variantId": variant["id"], "config": variant["config"]})


@bp.post("")
def track():
    data = request.get_json(silent=True) or {}
    test_id = require_str(data, "testId", max_len=80)
    variant_id = require_str(data, "variantId", max_len=80)
    metrics = data.get("metrics") or {}
    if not isinstance(metrics, dict):
        raise field_error("metrics", "metrics must be an object", "invalid_type")
    user_key, _, _ = _user_key()
    db = get_session()
    try:
        try:
            _manager().track_result(db, test_id=test_id, variant_id=variant_id, user_key=user_key, metrics=metrics)
        except KeyError:
            raise NotFoundError("test not found") from None
        except ValueError:
            raise field_error("variantId", "unknown variant for this test", "invalid_choice") from None
    finally:
        db.close()
    return jsonify({"ok": True}), 201


@bp.get("/<test_id>/results")
@require_admin
def results(test_id: str):
    db = get_session()
    try:
        try:
            return jsonify({"data": _manager().statistics(db, test_id)})
        except KeyError:
            raise NotFoundError("test not found") from None
    finally:
        db.close()
