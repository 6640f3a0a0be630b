"""Redis cache backend (JSON-serialised values)."""
from __future__ import annotations

import json
from typing import Any

import redis


class RedisCacheBackend:
    def __init__(self, url: str, client: redis.Redis | None = None) -> None:
        self._client = client or redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> Any | None:
        raw = self._client.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._client.set(key, json.dumps(value, default=str), ex=ttl or None)

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(key))

    def delete_pattern(self, pattern: str) -> int:
        keys = list(self._client.scan_iter(match=pattern))
        if not keys:
            return 0
        return int(self._client.delete(*keys))

    def incr(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        value = int(self._client.incrby(key, amount))
        if ttl and value == amount:
            self._client.expire(key, ttl)
        return value

    def ttl(self, key: str) -> int:
        return int(self._client.ttl(key))

    def exists(self, key: str) -> bool:
        return bool(self._client.exists(key))


__all__ = ["RedisCacheBackend"]
