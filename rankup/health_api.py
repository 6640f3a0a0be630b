from __future__ import annotations

import logging
import time
from typing import Any

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from .db import ping
from .models import utcnow

logger = logging.getLogger(__name__)

bp = Blueprint("health_api", __name__)

_STARTED = time.monotonic()


@bp.get("/healthz")
def healthz() -> tuple[dict[str, Any], int]:
    # Minimal health endpoint for container orchestrators
    return {"status": "ok"}, 200


@bp.get("/api/health")
def health():
    body = {
        "timestamp": utcnow().isoformat() + "Z",
        "uptime": round(time.monotonic() - _STARTED, 3),
        "environment": current_app.config.get("APP_ENV", "development"),
    }
    try:
        ok = ping()
    except SQLAlchemyError:
        logger.warning("health check: database unreachable", exc_info=True)
        ok = False
    if not ok:
        return jsonify({"status": "unhealthy", **body}), 503
    return jsonify({"status": "healthy", **body})
