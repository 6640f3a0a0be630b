"""Noop backend, always allows."""

from __future__ import annotations

from .rate_limiter import RateLimiter


class NoopRateLimiter(RateLimiter):  # type: ignore[misc]
    def allow(self, key: str, quota: int, per_seconds: int) -> bool:
        return True

    def retry_after(self, key: str, per_seconds: int) -> int:
        return 0

    def remaining(self, key: str, quota: int, per_seconds: int) -> int:
        return quota

    def reset(self, key: str) -> None:
        return None


__all__ = ["NoopRateLimiter"]
