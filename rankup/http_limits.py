"""HTTP rate limiting decorator and named limit types.

Add @rate_limited("auth") to a view to enforce the fixed-window quota for that
limit type, keyed by client identifier. Backend errors fail open.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import suppress
from functools import wraps
from typing import Any

from flask import Response, g, request
from typing_extensions import TypedDict

from .cache import Cache
from .metrics import increment as metrics_increment
from .rate_limiter import RateLimitError, get_rate_limiter, window_start

logger = logging.getLogger(__name__)


class LimitDefinition(TypedDict):
    quota: int
    per_seconds: int


LIMITS: dict[str, LimitDefinition] = {
    "api": {"quota": 100, "per_seconds": 60},
    "auth": {"quota": 5, "per_seconds": 15 * 60},
    "strict": {"quota": 10, "per_seconds": 60},
    "search": {"quota": 30, "per_seconds": 60},
    "payment": {"quota": 3, "per_seconds": 3600},
}

_blocklist = Cache("ratelimit")


def get_limit(name: str) -> LimitDefinition:
    try:
        return LIMITS[name]
    except KeyError:
        raise ValueError(f"unknown rate limit type: {name}") from None


def client_identifier() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.remote_addr or "unknown"


# ---- Block list ------------------------------------------------------------------

def block_identifier(identifier: str, seconds: int = 3600) -> None:
    _blocklist.set(f"blocked:{identifier}", True, ttl=seconds)


def unblock_identifier(identifier: str) -> bool:
    return _blocklist.delete(f"blocked:{identifier}")


def is_blocked(identifier: str) -> bool:
    return _blocklist.exists(f"blocked:{identifier}")


def blocked_retry_after(identifier: str) -> int:
    ttl = _blocklist.ttl(f"blocked:{identifier}")
    return ttl if ttl > 0 else 0


def reset_limit(name: str, identifier: str) -> None:
    get_limit(name)
    get_rate_limiter().reset(f"{name}:{identifier}")


# ---- Decorator ---------------------------------------------------------------------

def apply_rate_limit_headers(resp: Response) -> Response:
    headers = getattr(g, "rate_limit_headers", None)
    if headers:
        for k, v in headers.items():
            resp.headers.setdefault(k, v)
    return resp


def has_search_term() -> bool:
    return bool((request.args.get("search") or "").strip())


def rate_limited(
    name: str,
    *,
    key_func: Callable[[], str] = client_identifier,
    when: Callable[[], bool] | None = None,
):
    """Enforce limit ``name``; with ``when``, only requests where it returns True count."""
    ld = get_limit(name)

    def decorator(fn: Callable[..., Any]):
        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any):
            if when is not None and not when():
                return fn(*args, **kwargs)
            q, p = ld["quota"], ld["per_seconds"]
            ident = key_func()
            if is_blocked(ident):
                raise RateLimitError("identifier blocked", retry_after=blocked_retry_after(ident), limit=name)
            logical_key = f"{name}:{ident}"
            rl = get_rate_limiter()
            try:
                allowed = rl.allow(logical_key, quota=q, per_seconds=p)
                remaining = rl.remaining(logical_key, quota=q, per_seconds=p)
            except Exception:
                logger.warning("rate limiter backend failed; allowing request", exc_info=True)
                return fn(*args, **kwargs)
            reset_at = window_start(time.time(), p) + p
            g.rate_limit_headers = {
                "X-RateLimit-Limit": str(q),
                "X-RateLimit-Remaining": str(remaining),
                "X-RateLimit-Reset": str(reset_at),
            }
            with suppress(Exception):  # metrics must not break request
                metrics_increment(
                    "rate_limit.hit",
                    {"name": name, "outcome": "allow" if allowed else "block", "window": str(p)},
                )
            if not allowed:
                raise RateLimitError(
                    f"Rate limit exceeded for {name}",
                    retry_after=rl.retry_after(logical_key, per_seconds=p),
                    limit=name,
                )
            return fn(*args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "LIMITS",
    "get_limit",
    "client_identifier",
    "block_identifier",
    "unblock_identifier",
    "is_blocked",
    "reset_limit",
    "apply_rate_limit_headers",
    "rate_limited",
    "has_search_term",
]
