"""Input validation and sanitising helpers.

Every `require_*` helper raises ValidationError with a single field error so
handlers can validate inline without building error payloads.
"""
from __future__ import annotations

import html
import os
import re
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import urlparse

from .errors import ValidationError, field_error

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_MAX_LEN = 254
INPUT_MAX_LEN = 10000
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_SPECIAL = re.compile(r"[^A-Za-z0-9]")

POST_CATEGORIES = ("popular", "stock", "free", "notice")
POST_CATEGORY_FILTERS = ("all",) + POST_CATEGORIES
REPORT_TYPES = ("post", "comment")
REPORT_REASONS = ("spam", "harassment", "inappropriate", "misinformation", "other")


# ---- Sanitising -------------------------------------------------------------------

def sanitize_html(value: str) -> str:
    """Escape ``& < > " ' /`` so user text can be embedded safely."""
    return html.escape(value, quote=True).replace("/", "&#x2F;")


def sanitize_input(value: str) -> str:
    """Strip control characters, trim, and cap length."""
    return _CONTROL_CHARS.sub("", value).strip()[:INPUT_MAX_LEN]


def is_path_safe(path: str, base_dir: str) -> bool:
    base = os.path.realpath(base_dir)
    target = os.path.realpath(os.path.join(base, path))
    return target == base or target.startswith(base + os.sep)


def is_valid_email(email: str) -> bool:
    return len(email) <= EMAIL_MAX_LEN and bool(EMAIL_RE.match(email))


def check_password_strength(password: str) -> dict[str, Any]:
    score = 0
    feedback: list[str] = []
    if len(password) >= 8:
        score += 1
    else:
        feedback.append("Use at least 8 characters")
    if len(password) >= 12:
        score += 1
    if re.search(r"[a-z]", password):
        score += 1
    else:
        feedback.append("Add a lowercase letter")
    if re.search(r"[A-Z]", password):
        score += 1
    else:
        feedback.append("Add an uppercase letter")
    if re.search(r"\d", password):
        score += 1
    else:
        feedback.append("Add a number")
    if _SPECIAL.search(password):
        score += 1
    else:
        feedback.append("Add a special character")
    return {"is_strong": score >= 4 and len(password) >= 8, "score": score, "feedback": feedback}


# ---- Field helpers ----------------------------------------------------------------

def require_str(data: Mapping[str, Any], field: str, *, min_len: int = 1, max_len: int | None = None) -> str:
    raw = data.get(field)
    if raw is None or not isinstance(raw, str):
        raise field_error(field, f"{field} is required", "required")
    value = sanitize_input(raw)
    if len(value) < min_len:
        if min_len <= 1:
            raise field_error(field, f"{field} is required", "required")
        raise field_error(field, f"{field} must be at least {min_len} characters", "too_short")
    if max_len is not None and len(value) > max_len:
        raise field_error(field, f"{field} must be at most {max_len} characters", "too_long")
    return value


def optional_str(data: Mapping[str, Any], field: str, *, min_len: int = 0, max_len: int | None = None) -> str | None:
    if data.get(field) in (None, ""):
        return None
    return require_str(data, field, min_len=max(min_len, 1), max_len=max_len)


def require_choice(data: Mapping[str, Any], field: str, choices: Iterable[str]) -> str:
    value = data.get(field)
    allowed = tuple(choices)
    if value not in allowed:
        raise field_error(field, f"{field} must be one of: {', '.join(allowed)}", "invalid_choice")
    return str(value)


def require_int(data: Mapping[str, Any], field: str) -> int:
    value = data.get(field)
    if isinstance(value, bool):
        raise field_error(field, f"{field} must be an integer", "invalid_type")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        if value is None or value == "":
            raise field_error(field, f"{field} is required", "required") from None
        raise field_error(field, f"{field} must be an integer", "invalid_type") from None


def coerce_int(value: Any, default: int, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """Lenient int parse for query strings; falls back to default, clamps to bounds."""
    try:
        out = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        out = default
    if minimum is not None and out < minimum:
        out = minimum
    if maximum is not None and out > maximum:
        out = maximum
    return out


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def require_email(data: Mapping[str, Any], field: str = "email") -> str:
    raw = data.get(field)
    if not isinstance(raw, str) or not raw.strip():
        raise field_error(field, "email is required", "required")
    email = raw.strip().lower()
    if not is_valid_email(email):
        raise field_error(field, "invalid email address", "invalid_email")
    return email


def is_valid_url(value: str, *, schemes: tuple[str, ...] = ("http", "https")) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in schemes and bool(parsed.netloc)


def require_url(data: Mapping[str, Any], field: str) -> str:
    raw = data.get(field)
    if not isinstance(raw, str) or not is_valid_url(raw.strip()):
        raise field_error(field, f"{field} must be a valid http(s) URL", "invalid_url")
    return raw.strip()


def validate_new_password(password: Any, confirm: Any = None, *, field: str = "password", check_confirm: bool = False) -> str:
    if not isinstance(password, str) or len(password) < 8:
        raise field_error(field, "password must be at least 8 characters", "too_short")
    errors = []
    if not re.search(r"[A-Z]", password):
        errors.append({"field": field, "message": "password needs an uppercase letter", "code": "weak_password"})
    if not re.search(r"[a-z]", password):
        errors.append({"field": field, "message": "password needs a lowercase letter", "code": "weak_password"})
    if not re.search(r"\d", password):
        errors.append({"field": field, "message": "password needs a number", "code": "weak_password"})
    if check_confirm and confirm != password:
        errors.append({"field": "confirmPassword", "message": "passwords do not match", "code": "mismatch"})
    if errors:
        raise ValidationError(errors)
    return password


def validate_tags(value: Any) -> list[str]:
    if value in (None, ""):
        return []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise field_error("tags", "tags must be a list of strings", "invalid_type")
    return [sanitize_input(t)[:30] for t in value if t.strip()][:10]


# ---- Schemas ----------------------------------------------------------------------

def validate_post(data: Mapping[str, Any], *, partial: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not partial or "title" in data:
        out["title"] = require_str(data, "title", min_len=1, max_len=200)
    if not partial or "content" in data:
        out["content"] = require_str(data, "content", min_len=1)
    if not partial or "category" in data:
        out["category"] = require_choice(data, "category", POST_CATEGORY_FILTERS)
    if "tags" in data:
        out["tags"] = validate_tags(data.get("tags"))
    if data.get("stockId") not in (None, ""):
        out["stock_id"] = require_int(data, "stockId")
    return out


def validate_comment(data: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {
        "content": require_str(data, "content", min_len=1, max_len=500),
        "post_id": require_int(data, "postId"),
        "parent_id": None,
    }
    if data.get("parentId") not in (None, ""):
        out["parent_id"] = require_int(data, "parentId")
    return out


def validate_report(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": require_choice(data, "type", REPORT_TYPES),
        "target_id": require_int(data, "targetId"),
        "reason": require_choice(data, "reason", REPORT_REASONS),
        "description": optional_str(data, "description", max_len=500),
    }


def validate_profile(data: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if "name" in data:
        out["name"] = require_str(data, "name", min_len=2, max_len=50)
    if "email" in data:
        out["email"] = require_email(data)
    if "image" in data:
        out["image"] = require_url(data, "image") if data.get("image") else None
    if "bio" in data:
        out["bio"] = optional_str(data, "bio", max_len=500)
    return out


__all__ = [
    "POST_CATEGORIES",
    "POST_CATEGORY_FILTERS",
    "REPORT_TYPES",
    "REPORT_REASONS",
    "sanitize_html",
    "sanitize_input",
    "is_path_safe",
    "is_valid_email",
    "is_valid_url",
    "check_password_strength",
    "require_str",
    "optional_str",
    "require_choice",
    "require_int",
    "coerce_int",
    "coerce_bool",
    "require_email",
    "require_url",
    "validate_new_password",
    "validate_tags",
    "validate_post",
    "validate_comment",
    "validate_report",
    "validate_profile",
]
