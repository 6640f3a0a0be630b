from __future__ import annotations

import logging
import os
import secrets
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from . import totp, webhooks
from .app_authz import AuthzError
from .app_sessions import (
    SessionError,
    clear_login,
    create_session,
    get_session as get_auth_session,
    hash_token,
    persist_login,
    require_session,
    revoke_all,
    revoke_session,
)
from .audit import log_event
from .db import get_session
from .errors import ConflictError, NotFoundError, ValidationError, field_error
from .http_limits import client_identifier, rate_limited
from .models import AuthToken, User, UserSession, utcnow
from .user_service import invalidate_profile, serialize_user
from .validation import optional_str, require_email, validate_new_password

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

RESET_TOKEN_TTL = timedelta(hours=1)
VERIFY_TOKEN_TTL = timedelta(hours=24)

# --- Helpers ---


def _issue_token(db, user: User, purpose: str, ttl: timedelta) -> str:
    token = secrets.token_urlsafe(32)
    db.add(
        AuthToken(
            user_id=user.id,
            purpose=purpose,
            token_hash=hash_token(token),
            expires_at=utcnow() + ttl,
        )
    )
    db.commit()
    return token


def _live_token(db, token: str | None, purpose: str) -> AuthToken | None:
    if not token:
        return None
    row = (
        db.query(AuthToken)
        .filter(AuthToken.token_hash == hash_token(token), AuthToken.purpose == purpose)
        .first()
    )
    if row is None or row.used_at is not None or row.expires_at <= utcnow():
        return None
    return row


def _base_url() -> str:
    return (current_app.config.get("APP_BASE_URL") or request.host_url).rstrip("/")


def _check_second_factor(user: User, code: str | None) -> bool:
    """Accept a TOTP code or consume a backup code."""
    if not code:
        return False
    if user.two_factor_secret and totp.verify_totp(user.two_factor_secret, code):
        return True
    remaining = totp.consume_backup_code(user.backup_code_hashes, code)
    if remaining is None:
        return False
    user.backup_code_hashes = remaining
    return True


# --- Registration & login ---


@bp.post("/register")
@rate_limited("strict")
def register():
    data = request.get_json(silent=True) or {}
    email = require_email(data)
    password = data.get("password")
    if not isinstance(password, str) or len(password) < 8:
        raise field_error("password", "password must be at least 8 characters", "too_short")
    name = optional_str(data, "name", min_len=2, max_len=50)
    db = get_session()
    try:
        if db.query(User.id).filter(User.email == email).first():
            raise ConflictError("email_in_use")
        user = User(
            email=email,
            name=name or email.split("@")[0][:50],
            password_hash=generate_password_hash(password),
            provider="email",
            role="user",
            plan="free",
        )
        db.add(user)
        db.commit()
        payload = serialize_user(user)
    finally:
        db.close()
    log_event("user.registered", actor_user_id=payload["id"], actor_role="user", email=email)
    webhooks.send("user.created", {"userId": payload["id"], "email": email, "name": payload["name"]})
    return jsonify({"data": payload, "message": "registered"}), 201


@bp.post("/login")
@rate_limited("auth")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("missing credentials")
    db = get_session()
    try:
        user = db.query(User).filter(User.email == email).first()
        if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
            raise SessionError("invalid credentials", code="invalid_credentials")
        if user.suspended:
            raise AuthzError("account_suspended")
        if user.two_factor_enabled and not _check_second_factor(user, data.get("code")):
            db.rollback()
            raise SessionError("two-factor code required", code="two_factor_required")
        token, row = create_session(
            db,
            user,
            device_info=request.headers.get("User-Agent"),
            ip_address=client_identifier(),
        )
        persist_login(session, token, user)
        payload = {
            "user": serialize_user(user),
            "token": token,
            "expiresAt": row.expires_at.isoformat(),
        }
        user_id, role = user.id, user.role
    finally:
        db.close()
    log_event("auth.login", actor_user_id=user_id, actor_role=role)
    return jsonify({"data": payload})


@bp.post("/logout")
def logout():
    sess = get_auth_session()
    if sess:
        db = get_session()
        try:
            row = db.get(UserSession, sess["session_id"])
            if row is not None:
                revoke_session(db, row)
        finally:
            db.close()
        log_event("auth.logout")
    clear_login(session)
    return jsonify({"ok": True})


@bp.get("/me")
def me():
    sess = require_session()
    db = get_session()
    try:
        user = db.get(User, sess["user_id"])
        if user is None:
            raise SessionError("authentication required")
        return jsonify({"data": serialize_user(user)})
    finally:
        db.close()


# --- Password reset ---


@bp.post("/forgot-password")
@rate_limited("auth")
def forgot_password():
    data = request.get_json(silent=True) or {}
    email = require_email(data)
    db = get_session()
    try:
        user = db.query(User).filter(User.email == email).first()
        if user is not None and not user.suspended:
            token = _issue_token(db, user, "password_reset", RESET_TOKEN_TTL)
            # Mail delivery is out of scope; the link goes to the log
            logger.info("Password reset link for %s: %s/reset-password?token=%s", email, _base_url(), token)
    finally:
        db.close()
    return jsonify({"message": "If the account exists, a reset link has been sent."})


@bp.get("/forgot-password")
def verify_reset_token():
    db = get_session()
    try:
        row = _live_token(db, request.args.get("token"), "password_reset")
        if row is None:
            return jsonify({"valid": False})
        user = db.get(User, row.user_id)
        return jsonify({"valid": user is not None, "email": user.email if user else None})
    finally:
        db.close()


@bp.post("/reset-password")
@rate_limited("auth")
def reset_password():
    data = request.get_json(silent=True) or {}
    password = validate_new_password(
        data.get("password"), data.get("confirmPassword"), check_confirm=True
    )
    db = get_session()
    try:
        row = _live_token(db, data.get("token"), "password_reset")
        if row is None:
            raise field_error("token", "reset token is invalid or expired", "invalid_token")
        user = db.get(User, row.user_id)
        if user is None:
            raise field_error("token", "reset token is invalid or expired", "invalid_token")
        user.password_hash = generate_password_hash(password)
        row.used_at = utcnow()
        db.commit()
        revoked = revoke_all(db, user.id)
        user_id = user.id
    finally:
        db.close()
    log_event("auth.password_reset", actor_user_id=user_id, sessions_revoked=revoked)
    return jsonify({"message": "Password has been reset."})


# --- Email verification ---


@bp.post("/verify-email")
def request_email_verification():
    sess = require_session()
    db = get_session()
    try:
        user = db.get(User, sess["user_id"])
        if user.email_verified:
            raise ConflictError("already_verified")
        token = _issue_token(db, user, "email_verification", VERIFY_TOKEN_TTL)
        logger.info("Email verification link for %s: %s/verify-email?token=%s", user.email, _base_url(), token)
    finally:
        db.close()
    return jsonify({"message": "Verification email sent."})


@bp.get("/verify-email")
def confirm_email():
    db = get_session()
    try:
        row = _live_token(db, request.args.get("token"), "email_verification")
        if row is None:
            raise field_error("token", "verification token is invalid or expired", "invalid_token")
        user = db.get(User, row.user_id)
        if user is None:
            raise NotFoundError("user not found")
        user.email_verified = True
        row.used_at = utcnow()
        db.commit()
        user_id = user.id
    finally:
        db.close()
    invalidate_profile(user_id)
    log_event("auth.email_verified", actor_user_id=user_id)
    return jsonify({"message": "Email verified.", "verified": True})


# --- Session management ---


def _serialize_session(row: UserSession, current_id: int) -> dict:
    return {
        "id": row.id,
        "deviceInfo": row.device_info,
        "ipAddress": row.ip_address,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
        "lastActive": row.last_active.isoformat() if row.last_active else None,
        "expiresAt": row.expires_at.isoformat() if row.expires_at else None,
        "isCurrent": row.id == current_id,
    }


@bp.get("/sessions")
def list_sessions():
    sess = require_session()
    db = get_session()
    try:
        rows = (
            db.query(UserSession)
            .filter(
                UserSession.user_id == sess["user_id"],
                UserSession.revoked_at.is_(None),
                UserSession.expires_at > utcnow(),
            )
            .order_by(UserSession.last_active.desc(), UserSession.id.desc())
            .all()
        )
        return jsonify({"data": [_serialize_session(r, sess["session_id"]) for r in rows]})
    finally:
        db.close()


@bp.delete("/sessions")
def revoke_other_sessions():
    sess = require_session()
    db = get_session()
    try:
        count = revoke_all(db, sess["user_id"], except_session_id=sess["session_id"])
    finally:
        db.close()
    log_event("auth.sessions_revoked", count=count)
    return jsonify({"revoked": count})


@bp.delete("/sessions/<int:session_id>")
def revoke_one_session(session_id: int):
    sess = require_session()
    db = get_session()
    try:
        row = db.get(UserSession, session_id)
        if row is None or row.user_id != sess["user_id"] or row.revoked_at is not None:
            raise NotFoundError("session not found")
        revoke_session(db, row)
    finally:
        db.close()
    log_event("auth.session_revoked", session_id=session_id)
    return jsonify({"ok": True})


# --- Two-factor auth ---


@bp.post("/2fa/setup")
def two_factor_setup():
    sess = require_session()
    db = get_session()
    try:
        user = db.get(User, sess["user_id"])
        if user.two_factor_enabled:
            raise ConflictError("two_factor_already_enabled")
        secret = totp.generate_secret()
        codes = totp.generate_backup_codes()
        user.two_factor_secret = secret
        user.backup_code_hashes = [totp.hash_backup_code(c) for c in codes]
        db.commit()
        return jsonify(
            {
                "data": {
                    "secret": secret,
                    "otpauthUrl": totp.provisioning_uri(secret, user.email),
                    "backupCodes": codes,
                }
            }
        )
    finally:
        db.close()


@bp.post("/2fa/verify")
def two_factor_verify():
    sess = require_session()
    code = str((request.get_json(silent=True) or {}).get("code") or "").strip()
    if not code:
        raise field_error("code", "code is required", "required")
    db = get_session()
    try:
        user = db.get(User, sess["user_id"])
        if not user.two_factor_secret:
            raise ValidationError("two-factor setup has not been started")
        if not totp.verify_totp(user.two_factor_secret, code):
            raise field_error("code", "invalid verification code", "invalid_code")
        user.two_factor_enabled = True
        db.commit()
    finally:
        db.close()
    invalidate_profile(sess["user_id"])
    log_event("auth.2fa_enabled")
    return jsonify({"enabled": True})


@bp.post("/2fa/disable")
def two_factor_disable():
    sess = require_session()
    data = request.get_json(silent=True) or {}
    db = get_session()
    try:
        user = db.get(User, sess["user_id"])
        if not user.two_factor_enabled:
            raise ValidationError("two-factor auth is not enabled")
        if not check_password_hash(user.password_hash or "", data.get("password") or ""):
            raise field_error("password", "password is incorrect", "invalid_password")
        if not _check_second_factor(user, str(data.get("code") or "").strip()):
            raise field_error("code", "invalid verification code", "invalid_code")
        user.two_factor_enabled = False
        user.two_factor_secret = None
        user.backup_code_hashes = None
        db.commit()
    finally:
        db.close()
    invalidate_profile(sess["user_id"])
    log_event("auth.2fa_disabled")
    return jsonify({"enabled": False})


# --- Bootstrap admin utility ---
def ensure_bootstrap_admin():
    """Create an admin from BOOTSTRAP_ADMIN_EMAIL/PASSWORD when the users table is empty.

    Skips quietly when the variables are unset or the schema is not there yet.
    """
    email = current_app.config.get("BOOTSTRAP_ADMIN_EMAIL") or os.getenv("BOOTSTRAP_ADMIN_EMAIL")
    password = current_app.config.get("BOOTSTRAP_ADMIN_PASSWORD") or os.getenv("BOOTSTRAP_ADMIN_PASSWORD")
    if not email or not password:
        return None
    db = get_session()
    try:
        from sqlalchemy import inspect as sa_inspect

        if not sa_inspect(db.get_bind()).has_table("users"):
            return None
        if db.query(User.id).first():
            return None
        user = User(
            email=email.strip().lower(),
            name="Admin",
            password_hash=generate_password_hash(password),
            provider="email",
            role="super_admin",
            plan="premium",
            email_verified=True,
        )
        db.add(user)
        db.commit()
        logger.info("Bootstrap admin created: %s", user.email)
        return user.id
    finally:
        db.close()
