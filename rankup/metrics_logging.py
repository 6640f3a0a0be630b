from __future__ import annotations

import logging
from collections.abc import Mapping

from .metrics import Metrics

logger = logging.getLogger("rankup.metrics")


def _fmt_tags(tags: Mapping[str, str] | None) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted((tags or {}).items()))


class LoggingMetrics(Metrics):
    """Writes one log line per counter bump or timing sample."""

    def increment(self, name: str, tags: Mapping[str, str] | None = None) -> None:
        logger.info("metric counter name=%s tags=%s", name, _fmt_tags(tags))

    def timing(self, name: str, value_ms: float, tags: Mapping[str, str] | None = None) -> None:
        logger.info("metric timing name=%s ms=%.1f tags=%s", name, value_ms, _fmt_tags(tags))
