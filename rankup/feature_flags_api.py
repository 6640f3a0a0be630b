from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, jsonify, request

from .app_authz import require_admin
from .app_sessions import get_session as get_auth_session
from .audit import log_event
from .errors import NotFoundError, ValidationError, field_error
from .feature_flags import FeatureRegistry, FlagContext
from .validation import require_str

bp = Blueprint("feature_flags_api", __name__, url_prefix="/api/feature-flags")

RULE_TYPES = ("user", "role", "plan", "percentage")


def _registry() -> FeatureRegistry:
    return current_app.feature_registry  # type: ignore[attr-defined]


def _context() -> FlagContext:
    sess = get_auth_session()
    if sess is None:
        return {"user_id": None, "role": "guest", "plan": "free"}
    return {"user_id": sess["user_id"], "role": sess["role"], "plan": sess["plan"]}


def _parse_rule(index: int, rule: Any) -> dict:
    field = f"rules[{index}]"
    if not isinstance(rule, dict) or rule.get("type") not in RULE_TYPES:
        raise field_error(field, f"type must be one of {', '.join(RULE_TYPES)}", "invalid_rules")
    if not isinstance(rule.get("enabled"), bool):
        raise field_error(field, "enabled must be a boolean", "invalid_type")
    value = rule.get("value")
    if rule["type"] == "percentage":
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
            raise field_error(field, "percentage rule value must be an integer between 0 and 100", "out_of_range")
    elif rule["type"] == "user":
        items = value if isinstance(value, list) else [value]
        if not items or not all(isinstance(v, (str, int)) and not isinstance(v, bool) for v in items):
            raise field_error(field, "user rule value must be an id or a list of ids", "invalid_type")
    else:
        items = value if isinstance(value, list) else [value]
        if not items or not all(isinstance(v, str) and v for v in items):
            raise field_error(field, f"{rule['type']} rule value must be a string or a list of strings", "invalid_type")
    return {"type": rule["type"], "value": value, "enabled": rule["enabled"]}


def _parse_changes(data: dict) -> dict:
    changes: dict = {}
    if "enabled" in data:
        if not isinstance(data["enabled"], bool):
            raise field_error("enabled", "enabled must be a boolean", "invalid_type")
        changes["enabled"] = data["enabled"]
    if "description" in data:
        changes["description"] = require_str(data, "description", max_len=200)
    if "percentage" in data:
        pct = data["percentage"]
        if pct is not None and (isinstance(pct, bool) or not isinstance(pct, int) or not 0 <= pct <= 100):
            raise field_error("percentage", "percentage must be an integer between 0 and 100", "out_of_range")
        changes["percentage"] = pct
    if "userIds" in data:
        ids = data["userIds"]
        if not isinstance(ids, list):
            raise field_error("userIds", "userIds must be a list", "invalid_type")
        changes["user_ids"] = [str(i) for i in ids]
    if "rules" in data:
        rules = data["rules"]
        if not isinstance(rules, list):
            raise field_error("rules", "rules must be a list of {type, value, enabled}", "invalid_rules")
        changes["rules"] = [_parse_rule(i, r) for i, r in enumerate(rules)]
    if not changes:
        raise ValidationError("no updatable fields supplied")
    return changes


@bp.get("")
def list_flags():
    reg = _registry()
    return jsonify({"data": reg.evaluate_all(_context()), "flags": reg.list()})


@bp.post("")
def check_flag():
    data = request.get_json(silent=True) or {}
    name = require_str(data, "flagName", max_len=100)
    return jsonify({"flagName": name, "enabled": _registry().enabled(name, _context())})


@bp.patch("/<name>")
@require_admin
def update_flag(name: str):
    reg = _registry()
    if not reg.has(name):
        raise NotFoundError("flag not found")
    changes = _parse_changes(request.get_json(silent=True) or {})
    flag = reg.update(name, changes)
    log_event("feature_flag.updated", flag=name, changes=changes)
    return jsonify({"data": flag})
