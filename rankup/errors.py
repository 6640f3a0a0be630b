"""Domain error system + RFC7807 handler registration.

Handlers and services raise these; `register_error_handlers` maps them to
problem+json responses so views never build error bodies by hand.
"""
from __future__ import annotations

import logging
import traceback
import uuid
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from flask import request
from werkzeug.wrappers.response import Response

from .app_authz import AuthzError
from .app_sessions import SessionError
from .http_errors import (
    bad_request,
    conflict,
    forbidden,
    internal_server_error,
    method_not_allowed,
    not_found,
    too_many_requests,
    unauthorized,
    validation_failed,
)
from .metrics import increment as metrics_increment
from .pagination import PaginationError
from .rate_limiter import RateLimitError

logger = logging.getLogger(__name__)


class DomainError(Exception):
    def __init__(self, status: int, code: str, detail: str | None = None, **extra: Any):
        self.status = status
        self.code = code
        self.detail = detail or code
        self.extra = extra
        super().__init__(self.detail)


class ValidationError(DomainError):
    """400 with a list of ``{field, message, code}`` entries.

    Accepts either a plain message (turned into a single non-field error) or a
    ready list of field errors.
    """

    def __init__(self, errors: Any, detail: str = "validation_error", **extra: Any):
        if isinstance(errors, str):
            errors = [{"field": None, "message": errors, "code": "invalid"}]
        super().__init__(400, "validation_error", detail, **extra)
        self.errors = errors


class NotFoundError(DomainError):
    def __init__(self, detail: str = "not_found", **extra: Any):
        super().__init__(404, "not_found", detail, **extra)


class ConflictError(DomainError):
    def __init__(self, detail: str = "conflict", **extra: Any):
        super().__init__(409, "conflict", detail, **extra)


def field_error(field: str, message: str, code: str = "invalid") -> ValidationError:
    return ValidationError([{"field": field, "message": message, "code": code}])


_STATUS_HELPERS: dict[int, Callable[..., Response]] = {
    400: bad_request,
    401: unauthorized,
    403: forbidden,
    404: not_found,
    405: method_not_allowed,
    409: conflict,
    429: too_many_requests,
}


def _emit_problem(resp: Response) -> None:
    with suppress(Exception):  # metrics must never break error responses
        payload = resp.get_json() or {}
        metrics_increment(
            "http.problem",
            {"status": str(payload.get("status")), "path": request.path},
        )


def register_error_handlers(app: Any) -> None:
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(SessionError)
    def _h_session(err: SessionError) -> Response:
        resp = unauthorized(detail=str(err) or "authentication_required", code=err.code)
        _emit_problem(resp)
        return resp

    @app.errorhandler(AuthzError)
    def _h_authz(err: AuthzError) -> Response:
        required = getattr(err, "required", None)
        extra = {"required_role": required} if required else {}
        resp = forbidden(detail=str(err) or "forbidden", **extra)
        _emit_problem(resp)
        return resp

    @app.errorhandler(DomainError)
    def _h_domain(err: DomainError) -> Response:
        if isinstance(err, ValidationError):
            resp = validation_failed(err.errors, detail=err.detail, **err.extra)
        else:
            helper = _STATUS_HELPERS.get(err.status, bad_request)
            resp = helper(detail=err.detail, code=err.code, **err.extra)
            resp.status_code = err.status
        _emit_problem(resp)
        return resp

    @app.errorhandler(HTTPException)
    def _h_http(ex: HTTPException) -> Response:
        status = ex.code or 500
        helper = _STATUS_HELPERS.get(status)
        if helper:
            resp = helper(detail=ex.description)
        elif status >= 500:
            resp = internal_server_error()
        else:
            resp = bad_request(detail=str(ex.description))
            resp.status_code = status
        _emit_problem(resp)
        return resp

    @app.errorhandler(RateLimitError)
    def _h_rate_limit(ex: RateLimitError) -> Response:
        resp = too_many_requests(detail="rate_limited", retry_after=ex.retry_after, limit=ex.limit)
        _emit_problem(resp)
        return resp

    @app.errorhandler(PaginationError)
    def _h_pagination(err: PaginationError) -> Response:
        resp = bad_request(detail=str(err) or "bad_request")
        _emit_problem(resp)
        return resp

    @app.errorhandler(Exception)
    def _h_exception(ex: Exception) -> Response:
        incident_id = str(uuid.uuid4())
        logger.error(
            "Unhandled exception incident_id=%s path=%s\n%s",
            incident_id,
            request.path,
            traceback.format_exc(),
        )
        resp = internal_server_error(incident_id=incident_id)
        _emit_problem(resp)
        return resp


__all__ = [
    "DomainError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "field_error",
    "register_error_handlers",
]
