"""In-process cache backend with per-key expiry (single process only)."""
from __future__ import annotations

import copy
import fnmatch
import threading
import time
from typing import Any

# Expired keys are purged on write at most this often
SWEEP_INTERVAL = 60.0


class MemoryCacheBackend:
    def __init__(self) -> None:
        # key -> (value, expires_at | None)
        self._store: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        self._next_sweep = now + SWEEP_INTERVAL
        dead = [k for k, (_, exp) in self._store.items() if exp is not None and exp <= now]
        for k in dead:
            del self._store[k]

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry[1] is not None and entry[1] <= time.time():
            self._store.pop(key, None)
            return None
        return entry

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live(key)
        # Copy so callers mutating a result never corrupt the cached value
        return copy.deepcopy(entry[0]) if entry else None

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        now = time.time()
        expires = now + ttl if ttl else None
        with self._lock:
            self._sweep(now)
            self._store[key] = (copy.deepcopy(value), expires)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            keys = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._store[k]
        return len(keys)

    def incr(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        with self._lock:
            self._sweep(time.time())
            entry = self._live(key)
            if entry is None:
                value = amount
                expires = time.time() + ttl if ttl else None
            else:
                value = int(entry[0]) + amount
                expires = entry[1]
            self._store[key] = (value, expires)
        return value

    def ttl(self, key: str) -> int:
        """Redis semantics: -2 missing, -1 no expiry, else seconds left."""
        with self._lock:
            entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return max(0, int(entry[1] - time.time()))

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None


__all__ = ["MemoryCacheBackend"]
