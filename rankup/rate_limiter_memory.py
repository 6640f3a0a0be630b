"""In-process memory fixed-window rate limiter.
Single-process only; the default for development and tests."""
from __future__ import annotations

import threading
import time

from .rate_limiter import RateLimiter, window_start

SWEEP_INTERVAL = 60.0


class MemoryRateLimiter(RateLimiter):  # type: ignore[misc]
    def __init__(self) -> None:
        # key -> (window_start, per_seconds, count)
        self._buckets: dict[str, tuple[int, int, int]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        # Buckets whose window has closed are dropped
        if now < self._next_sweep:
            return
        self._next_sweep = now + SWEEP_INTERVAL
        dead = [k for k, (ws, per, _) in self._buckets.items() if ws + per <= now]
        for k in dead:
            del self._buckets[k]

    def allow(self, key: str, quota: int, per_seconds: int) -> bool:
        ws = window_start(size=per_seconds)
        with self._lock:
            self._sweep(time.time())
            cur = self._buckets.get(key)
            if cur is None or cur[0] != ws:
                self._buckets[key] = (ws, per_seconds, 1)
                return 1 <= quota
            new_count = cur[2] + 1
            self._buckets[key] = (ws, per_seconds, new_count)
        return new_count <= quota

    def retry_after(self, key: str, per_seconds: int) -> int:
        cur = self._buckets.get(key)
        if not cur:
            return 0
        end = cur[0] + per_seconds
        now = int(time.time())
        if now >= end:
            return 0
        return end - now

    def remaining(self, key: str, quota: int, per_seconds: int) -> int:
        cur = self._buckets.get(key)
        if not cur or cur[0] != window_start(size=per_seconds):
            return quota
        return max(0, quota - cur[2])

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)


__all__ = ["MemoryRateLimiter"]
