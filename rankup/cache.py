"""Cache-aside helpers.

Backends implement a small key/value protocol; `Cache` adds namespacing and
`get_or_set`. Values are JSON-compatible. Backend failures are treated as a
miss so a cache outage never fails a request.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from typing import Any, Protocol, TypeVar, runtime_checkable
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_PREFIX = "rankup"

# Fixed TTLs (seconds) per data type
STOCK_QUOTE = 60
STOCK_LIST = 300
MARKET_INDEX = 60
NEWS_LIST = 300
NEWS_DETAIL = 3600
USER_PROFILE = 600
USER_SESSION = 86400
API_RESPONSE = 300
SEARCH_RESULTS = 600

NAMESPACES = ("stock", "news", "user", "session", "api", "feature-flag", "ratelimit")


@runtime_checkable
class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...  # pragma: no cover
    def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...  # pragma: no cover
    def delete(self, key: str) -> bool: ...  # pragma: no cover
    def delete_pattern(self, pattern: str) -> int: ...  # pragma: no cover
    def incr(self, key: str, amount: int = 1, ttl: int | None = None) -> int: ...  # pragma: no cover
    def ttl(self, key: str) -> int: ...  # pragma: no cover
    def exists(self, key: str) -> bool: ...  # pragma: no cover


class _EnvConfig:
    backend: str
    redis_url: str | None

    def __init__(self) -> None:
        self.reload()

    def reload(self) -> None:
        self.backend = os.getenv("CACHE_BACKEND", "memory").strip().lower() or "memory"
        self.redis_url = os.getenv("REDIS_URL")


_cfg = _EnvConfig()
_backend: CacheBackend | None = None


def _build() -> CacheBackend:
    if _cfg.backend == "redis":
        try:
            from .cache_redis import RedisCacheBackend

            return RedisCacheBackend(_cfg.redis_url or "redis://localhost:6379/0")
        except Exception:
            logger.warning("Redis cache unavailable; using in-memory cache", exc_info=True)
    from .cache_memory import MemoryCacheBackend

    return MemoryCacheBackend()


def configure(backend: str | None = None, redis_url: str | None = None) -> None:
    global _backend
    _cfg.reload()
    if backend:
        _cfg.backend = backend.strip().lower()
    if redis_url:
        _cfg.redis_url = redis_url
    _backend = None


def get_backend() -> CacheBackend:
    global _backend
    if _backend is None:
        _backend = _build()
    return _backend


def _test_reset() -> None:  # pragma: no cover - invoked by tests explicitly
    global _backend
    _cfg.reload()
    _backend = None


def make_cache_key(endpoint: str, params: Mapping[str, Any] | None = None) -> str:
    """Stable key for an endpoint + query params: ``endpoint?a=1&b=2`` (sorted, Nones dropped)."""
    items = sorted((k, v) for k, v in (params or {}).items() if v is not None and v != "")
    if not items:
        return endpoint
    return f"{endpoint}?{urlencode(items)}"


class Cache:
    """Namespaced view over the configured backend."""

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{KEY_PREFIX}:{self.namespace}:{key}"

    def get(self, key: str) -> Any | None:
        try:
            return get_backend().get(self._key(key))
        except Exception as e:
            logger.error("cache get failed key=%s: %s", key, e)
            return None

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        try:
            get_backend().set(self._key(key), value, ttl)
        except Exception as e:
            logger.error("cache set failed key=%s: %s", key, e)

    def delete(self, key: str) -> bool:
        try:
            return get_backend().delete(self._key(key))
        except Exception as e:
            logger.error("cache delete failed key=%s: %s", key, e)
            return False

    def clear(self, pattern: str = "*") -> int:
        try:
            return get_backend().delete_pattern(self._key(pattern))
        except Exception as e:
            logger.error("cache clear failed namespace=%s: %s", self.namespace, e)
            return 0

    def incr(self, key: str, amount: int = 1, ttl: int | None = None) -> int | None:
        try:
            return get_backend().incr(self._key(key), amount, ttl)
        except Exception as e:
            logger.error("cache incr failed key=%s: %s", key, e)
            return None

    def exists(self, key: str) -> bool:
        try:
            return get_backend().exists(self._key(key))
        except Exception as e:
            logger.error("cache exists failed key=%s: %s", key, e)
            return False

    def ttl(self, key: str) -> int:
        try:
            return get_backend().ttl(self._key(key))
        except Exception as e:
            logger.error("cache ttl failed key=%s: %s", key, e)
            return -2

    def get_or_set(self, key: str, fetcher: Callable[[], T], ttl: int | None = None) -> T:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = fetcher()
        if value is not None:
            self.set(key, value, ttl)
        return value


stock_cache = Cache("stock")
news_cache = Cache("news")
user_cache = Cache("user")

__all__ = [
    "Cache",
    "CacheBackend",
    "NAMESPACES",
    "configure",
    "get_backend",
    "make_cache_key",
    "stock_cache",
    "news_cache",
    "user_cache",
]
