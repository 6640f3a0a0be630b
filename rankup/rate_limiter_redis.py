"""Fixed-window limiter using Redis INCR+EXPIRE (EXPIRE set when INCR==1); retry_after via TTL."""
from __future__ import annotations

import redis

from .rate_limiter import RateLimiter, window_start


class RedisRateLimiter(RateLimiter):  # type: ignore[misc]
    _prefix: str
    _client: redis.Redis

    def __init__(self, url: str, prefix: str, client: redis.Redis | None = None) -> None:
        self._client = client or redis.Redis.from_url(url, decode_responses=False)
        self._prefix = prefix

    def _key(self, logical_key: str, per_seconds: int) -> str:
        ws = window_start(size=per_seconds)
        return f"{self._prefix}{logical_key}:{ws}:{per_seconds}"

    def allow(self, key: str, quota: int, per_seconds: int) -> bool:
        rk = self._key(key, per_seconds)
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(rk, 1)
        pipe.ttl(rk)
        results = pipe.execute()
        count = int(results[0])
        ttl = int(results[1])
        if count == 1 or ttl < 0:
            self._client.expire(rk, per_seconds)
        return count <= quota

    def retry_after(self, key: str, per_seconds: int) -> int:
        ttl = self._client.ttl(self._key(key, per_seconds))
        if ttl is None or ttl < 0:
            return per_seconds
        return int(ttl)

    def remaining(self, key: str, quota: int, per_seconds: int) -> int:
        raw = self._client.get(self._key(key, per_seconds))
        used = int(raw) if raw is not None else 0
        return max(0, quota - used)

    def reset(self, key: str) -> None:
        for rk in self._client.scan_iter(match=f"{self._prefix}{key}:*"):
            self._client.delete(rk)


__all__ = ["RedisRateLimiter"]
