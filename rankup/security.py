"""Security middleware and helpers.

Features:
 - CORS allow-list.
 - CSRF double-submit cookie (``csrf_token`` cookie mirrored in ``X-CSRF-Token``).
 - Security headers (HSTS, CSP, Referrer-Policy, Permissions-Policy).

CSRF Policy:
 - Only enforced when STRICT_CSRF is on (tests additionally need STRICT_CSRF_IN_TESTS).
 - SAFE methods and bearer-token requests are always allowed.
 - The anonymous auth entry points (login, register, forgot and reset password)
   are exempt; logout, session and 2FA management are not.
 - Denials are RFC7807 problem+json with detail ``invalid_csrf``.
"""

from __future__ import annotations

import logging
import secrets

from flask import Flask, Response, g, make_response, request

from .http_errors import csrf_invalid
from .metrics import increment as metrics_increment

logger = logging.getLogger(__name__)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
# Anonymous entry points only; every other cookie-authenticated mutation is checked
CSRF_EXEMPT_PATHS: frozenset[str] = frozenset(
    {
        "/api/auth/login",
        "/api/auth/register",
        "/api/auth/forgot-password",
        "/api/auth/reset-password",
    }
)

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": "default-src 'self'; object-src 'none'; base-uri 'self'; frame-ancestors 'none'",
}
HSTS_VALUE = "max-age=63072000; includeSubDomains; preload"


def _set_csrf_cookie(app: Flask, resp: Response, token: str) -> None:
    # Readable by JS so the SPA can mirror it into the header; Secure outside dev/test
    resp.set_cookie(
        app.config.get("CSRF_COOKIE_NAME", "csrf_token"),
        token,
        secure=not (app.config.get("DEBUG") or app.config.get("TESTING")),
        httponly=False,
        samesite="Strict",
    )


def _csrf_enforced(app: Flask) -> bool:
    if not app.config.get("STRICT_CSRF"):
        return False
    if app.config.get("TESTING") and not app.config.get("STRICT_CSRF_IN_TESTS"):
        return False
    return True


def _validate_cors(app: Flask, resp: Response) -> Response:
    allowed: list[str] = app.config.get("CORS_ALLOWED_ORIGINS", []) or []
    if not allowed:
        return resp
    origin = request.headers.get("Origin")
    if origin and origin in allowed:
        resp.headers.setdefault("Vary", "Origin")
        resp.headers["Access-Control-Allow-Origin"] = origin
        resp.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
        req_hdrs = request.headers.get("Access-Control-Request-Headers")
        if req_hdrs:
            resp.headers["Access-Control-Allow-Headers"] = req_hdrs
        resp.headers["Access-Control-Allow-Credentials"] = "true"
        resp.headers["Access-Control-Max-Age"] = "600"
    return resp


def _ensure_csrf_token(app: Flask) -> str:
    cookie_name = app.config.get("CSRF_COOKIE_NAME", "csrf_token")
    if cookie_name in request.cookies:
        return request.cookies[cookie_name]
    token = secrets.token_hex(16)
    g._new_csrf_token = token
    return token


def _csrf_check(app: Flask) -> Response | None:
    method = request.method.upper()
    path = request.path or "/"
    if method in SAFE_METHODS or path in CSRF_EXEMPT_PATHS:
        return None
    if request.headers.get("Authorization", "").lower().startswith("bearer "):
        return None
    cookie_name = app.config.get("CSRF_COOKIE_NAME", "csrf_token")
    sent_cookie = request.cookies.get(cookie_name)
    sent_header = request.headers.get(app.config.get("CSRF_HEADER_NAME", "X-CSRF-Token"))
    if sent_cookie and sent_header and secrets.compare_digest(sent_cookie, sent_header):
        return None
    reason = "mismatch" if sent_header else "missing"
    metrics_increment("security.csrf_blocked", {"reason": reason})
    logger.info("csrf blocked reason=%s path=%s", reason, path)
    return csrf_invalid()


def init_security(app: Flask) -> Flask:
    @app.before_request
    def _security_before_request():
        _ensure_csrf_token(app)
        if _csrf_enforced(app):
            return _csrf_check(app)
        return None

    @app.after_request
    def _security_after_request(resp: Response) -> Response:
        for k, v in SECURITY_HEADERS.items():
            resp.headers.setdefault(k, v)
        if not app.config.get("TESTING") and not app.config.get("DEBUG"):
            resp.headers.setdefault("Strict-Transport-Security", HSTS_VALUE)
        if hasattr(g, "_new_csrf_token"):
            _set_csrf_cookie(app, resp, g._new_csrf_token)
        return _validate_cors(app, resp)

    @app.route("/", methods=["OPTIONS"], defaults={"path": ""})
    @app.route("/<path:path>", methods=["OPTIONS"])
    def _cors_preflight(path=""):
        return _validate_cors(app, make_response(""))

    return app


__all__ = ["init_security", "SECURITY_HEADERS", "CSRF_EXEMPT_PATHS"]
