"""Process-wide metrics sink.

Counters (``increment``) and timings in milliseconds (``timing``). The default
sink discards everything; ``create_app`` swaps in the logging backend when
``METRICS_BACKEND=log``.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol


class Metrics(Protocol):
    def increment(self, name: str, tags: Mapping[str, str] | None = None) -> None: ...

    def timing(self, name: str, value_ms: float, tags: Mapping[str, str] | None = None) -> None: ...


class _NoopMetrics:
    def increment(self, name: str, tags: Mapping[str, str] | None = None) -> None:
        return

    def timing(self, name: str, value_ms: float, tags: Mapping[str, str] | None = None) -> None:
        return


_metrics: Metrics = _NoopMetrics()


def set_metrics(m: Metrics) -> None:
    global _metrics
    _metrics = m


def reset_metrics() -> None:
    set_metrics(_NoopMetrics())


def increment(name: str, tags: Mapping[str, str] | None = None) -> None:
    _metrics.increment(name, tags)


def timing(name: str, value_ms: float, tags: Mapping[str, str] | None = None) -> None:
    _metrics.timing(name, value_ms, tags)


__all__ = ["Metrics", "set_metrics", "reset_metrics", "increment", "timing"]
