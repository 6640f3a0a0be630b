"""Outgoing webhook dispatcher.

Iterates the configured endpoints subscribed to an event and POSTs a signed
JSON payload to each. No retry or delivery tracking: a failed delivery is
logged and counted, never raised to the caller.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import requests
from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from .db import get_new_session
from .metrics import increment as metrics_increment
from .models import WebhookEndpoint

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
USER_AGENT = "RANKUP-Webhooks/1.0"

EVENTS: dict[str, str] = {
    "user.created": "New user registered",
    "user.updated": "User profile updated",
    "user.deleted": "User account deleted",
    "subscription.created": "Subscription created",
    "subscription.updated": "Subscription changed",
    "subscription.cancelled": "Subscription cancelled",
    "payment.completed": "Payment completed",
    "payment.failed": "Payment failed",
    "post.created": "Community post created",
    "post.updated": "Community post edited",
    "post.deleted": "Community post deleted",
    "comment.created": "Comment created",
    "stock.alert": "Stock price alert",
}

# Events the env-configured endpoint receives
DEFAULT_ENDPOINT_EVENTS = (
    "user.created",
    "subscription.created",
    "payment.completed",
    "payment.failed",
    "post.created",
    "comment.created",
)


@dataclass
class Endpoint:
    id: str
    url: str
    secret: str
    events: list[str] = field(default_factory=list)


@dataclass
class DispatchSummary:
    event: str
    attempted: int = 0
    delivered: int = 0
    failed: int = 0


def sign(body: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: str, signature: str, secret: str) -> bool:
    return hmac.compare_digest(sign(body, secret), signature or "")


def build_payload(event: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": f"whk_{int(time.time() * 1000)}_{secrets.token_hex(8)}",
        "event": event,
        "timestamp": datetime.now(UTC).isoformat(),
        "data": data,
    }


def _static_endpoint() -> Endpoint | None:
    if not has_app_context():
        return None
    url = current_app.config.get("WEBHOOK_URL")
    secret = current_app.config.get("WEBHOOK_SECRET")
    if url and secret:
        return Endpoint(id="default", url=url, secret=secret, events=list(DEFAULT_ENDPOINT_EVENTS))
    return None


def active_endpoints(event: str, db: Session | None = None) -> list[Endpoint]:
    out: list[Endpoint] = []
    static = _static_endpoint()
    if static and event in static.events:
        out.append(static)
    own = db is None
    db = db or get_new_session()
    try:
        for row in db.query(WebhookEndpoint).filter(WebhookEndpoint.active.is_(True)).all():
            if event in (row.events or []):
                out.append(Endpoint(id=str(row.id), url=row.url, secret=row.secret, events=list(row.events)))
    finally:
        if own:
            db.close()
    return out


def deliver(endpoint: Endpoint, payload: dict[str, Any]) -> bool:
    body = json.dumps(payload, separators=(",", ":"), default=str)
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-ID": payload["id"],
        "X-Webhook-Signature": sign(body, endpoint.secret),
        "X-Webhook-Timestamp": payload["timestamp"],
        "User-Agent": USER_AGENT,
    }
    try:
        resp = requests.post(endpoint.url, data=body.encode("utf-8"), headers=headers, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error("Webhook delivery failed endpoint=%s event=%s: %s", endpoint.url, payload["event"], e)
        metrics_increment("webhook.delivery", {"event": payload["event"], "outcome": "failed"})
        return False
    logger.debug("Webhook delivered endpoint=%s event=%s status=%s", endpoint.url, payload["event"], resp.status_code)
    metrics_increment("webhook.delivery", {"event": payload["event"], "outcome": "delivered"})
    return True


def send(event: str, data: dict[str, Any], db: Session | None = None) -> DispatchSummary:
    """POST ``event`` to every subscribed endpoint; returns a delivery summary."""
    if event not in EVENTS:
        raise ValueError(f"unknown webhook event: {event}")
    summary = DispatchSummary(event=event)
    try:
        endpoints = active_endpoints(event, db)
    except Exception:
        logger.exception("Webhook endpoint lookup failed event=%s", event)
        return summary
    if not endpoints:
        logger.debug("No webhook endpoints for event %s", event)
        return summary
    payload = build_payload(event, data)
    for ep in endpoints:
        summary.attempted += 1
        if deliver(ep, payload):
            summary.delivered += 1
        else:
            summary.failed += 1
    logger.info("Webhooks sent event=%s endpoints=%d delivered=%d", event, summary.attempted, summary.delivered)
    return summary


def create_endpoint(db: Session, url: str, events: list[str]) -> WebhookEndpoint:
    row = WebhookEndpoint(url=url, secret=secrets.token_hex(32), events=list(events), active=True)
    db.add(row)
    db.commit()
    return row


def ping_endpoint(row: WebhookEndpoint) -> bool:
    payload = build_payload("stock.alert", {"test": True, "message": "This is a test webhook"})
    return deliver(Endpoint(id=str(row.id), url=row.url, secret=row.secret, events=list(row.events or [])), payload)


__all__ = [
    "EVENTS",
    "DispatchSummary",
    "sign",
    "verify_signature",
    "build_payload",
    "active_endpoints",
    "deliver",
    "send",
    "create_endpoint",
    "ping_endpoint",
]
