"""Logging setup: request log + support ring buffer.

The request logger emits one structured dict per request. The support handler
captures WARN+ records with their request id into an in-memory deque that
admins can read without external log aggregation.
"""

from __future__ import annotations

import collections
import logging
import time

from flask import g, has_request_context, request

LOG_BUFFER: collections.deque[dict] = collections.deque(maxlen=500)

REQUEST_LOGGER = "rankup.request"


class SupportLogHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            rid = getattr(g, "request_id", "-") if has_request_context() else "-"
            path = request.path if has_request_context() else "-"
        except Exception:
            rid = "-"
            path = "-"
        LOG_BUFFER.append(
            {
                "ts": time.time(),
                "level": record.levelname,
                "logger": record.name,
                "msg": self.format(record),
                "request_id": rid,
                "path": path,
            }
        )


def install_support_log_handler() -> None:
    root = logging.getLogger()
    # Avoid duplicate attachment when create_app runs more than once
    if any(isinstance(h, SupportLogHandler) for h in root.handlers):
        return
    h = SupportLogHandler(level=logging.WARNING)
    h.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(h)


def get_request_logger() -> logging.Logger:
    log = logging.getLogger(REQUEST_LOGGER)
    if not log.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("%(message)s"))
        log.addHandler(h)
    log.setLevel(logging.INFO)
    return log


def recent_logs(limit: int = 100, level: str | None = None) -> list[dict]:
    items = list(LOG_BUFFER)
    if level:
        items = [i for i in items if i["level"] == level.upper()]
    return items[-limit:][::-1]


__all__ = ["LOG_BUFFER", "install_support_log_handler", "get_request_logger", "recent_logs"]
