from __future__ import annotations

from flask import Blueprint, jsonify, request

from . import webhooks
from .app_authz import require_admin, require_login
from .audit import log_event
from .db import get_session
from .errors import NotFoundError, field_error
from .models import WebhookEndpoint
from .validation import require_url

bp = Blueprint("webhooks_api", __name__, url_prefix="/api/webhooks")


@bp.post("")
@require_admin
def register_endpoint():
    data = request.get_json(silent=True) or {}
    url = require_url(data, "url")
    events = data.get("events")
    if not isinstance(events, list) or not events:
        raise field_error("events", "events must be a non-empty list", "required")
    unknown = [e for e in events if e not in webhooks.EVENTS]
    if unknown:
        raise field_error("events", f"unknown events: {', '.join(map(str, unknown))}", "invalid_choice")
    db = get_session()
    try:
        row = webhooks.create_endpoint(db, url, events)
        payload = {"id": row.id, "url": row.url, "events": row.events, "secret": row.secret}
    finally:
        db.close()
    log_event("webhook.registered", endpoint_id=payload["id"], url=url, events=events)
    return (
        jsonify({"data": payload, "message": "Store the secret now; it will not be shown again."}),
        201,
    )


@bp.get("")
@require_login
def list_events():
    return jsonify({"events": [{"name": k, "description": v} for k, v in webhooks.EVENTS.items()]})


@bp.post("/<int:endpoint_id>/test")
@require_admin
def send_test(endpoint_id: int):
    db = get_session()
    try:
        row = db.get(WebhookEndpoint, endpoint_id)
        if row is None:
            raise NotFoundError("webhook endpoint not found")
        delivered = webhooks.ping_endpoint(row)
    finally:
        db.close()
    return jsonify({"ok": delivered, "delivered": delivered})
