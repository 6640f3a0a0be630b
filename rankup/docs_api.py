"""OpenAPI description served at /api/docs.

Paths are collected from the registered ``/api`` routes, so a new blueprint
shows up without touching this module. Schemas cover the main resources and
the problem+json error envelope.
"""

from __future__ import annotations

import re
from typing import Any

from flask import Blueprint, current_app, jsonify

bp = Blueprint("docs_api", __name__)

_CONVERTER = re.compile(r"<(?:(\w+):)?(\w+)>")
_PARAM_TYPES = {"int": "integer", "float": "number"}
_PROBLEM_CODES = ("400", "401", "403", "404", "409", "429", "500")

_TITLES = {
    "400": "Bad Request",
    "401": "Unauthorized",
    "403": "Forbidden",
    "404": "Not Found",
    "409": "Conflict",
    "429": "Too Many Requests",
    "500": "Internal Server Error",
}


def _schemas() -> dict[str, Any]:
    ts = {"type": "string", "format": "date-time"}
    return {
        "ProblemDetails": {
            "type": "object",
            "required": ["type", "title", "status", "detail"],
            "properties": {
                "type": {"type": "string"},
                "title": {"type": "string"},
                "status": {"type": "integer"},
                "detail": {"type": "string"},
                "request_id": {"type": "string"},
                "errors": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "field": {"type": "string"},
                            "message": {"type": "string"},
                            "code": {"type": "string"},
                        },
                    },
                },
                "required_role": {"type": "string"},
                "retry_after": {"type": "integer"},
                "incident_id": {"type": "string"},
            },
        },
        "PageMeta": {
            "type": "object",
            "required": ["page", "limit", "total", "totalPages", "hasNext", "hasPrev"],
            "properties": {
                "page": {"type": "integer"},
                "limit": {"type": "integer"},
                "total": {"type": "integer"},
                "totalPages": {"type": "integer"},
                "hasNext": {"type": "boolean"},
                "hasPrev": {"type": "boolean"},
            },
        },
        "User": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "email": {"type": "string", "format": "email"},
                "name": {"type": "string"},
                "role": {"type": "string", "enum": ["user", "pro", "premium", "admin", "super_admin"]},
                "plan": {"type": "string"},
                "emailVerified": {"type": "boolean"},
                "createdAt": ts,
            },
        },
        "Stock": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "symbol": {"type": "string", "example": "005930"},
                "name": {"type": "string"},
                "market": {"type": "string", "enum": ["KOSPI", "KOSDAQ"]},
                "currentPrice": {"type": "number"},
                "change": {"type": "number"},
                "changePercent": {"type": "number"},
                "volume": {"type": "integer"},
                "marketCap": {"type": "integer", "nullable": True},
                "per": {"type": "number", "nullable": True},
                "pbr": {"type": "number", "nullable": True},
                "rank": {"type": "integer", "nullable": True},
            },
        },
        "News": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "title": {"type": "string"},
                "summary": {"type": "string"},
                "source": {"type": "string"},
                "content": {"type": "string"},
                "category": {"type": "string"},
                "isHot": {"type": "boolean"},
                "views": {"type": "integer"},
                "publishedAt": ts,
            },
        },
        "Post": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "title": {"type": "string"},
                "content": {"type": "string"},
                "category": {"type": "string"},
                "views": {"type": "integer"},
                "stockId": {"type": "integer", "nullable": True},
                "createdAt": ts,
            },
        },
        "Comment": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "postId": {"type": "integer"},
                "parentId": {"type": "integer", "nullable": True},
                "content": {"type": "string"},
                "replies": {"type": "array", "items": {"$ref": "#/components/schemas/Comment"}},
                "createdAt": ts,
            },
        },
    }


def _problem_responses() -> dict[str, Any]:
    return {
        f"Problem{code}": {
            "description": _TITLES[code],
            "content": {"application/problem+json": {"schema": {"$ref": "#/components/schemas/ProblemDetails"}}},
        }
        for code in _PROBLEM_CODES
    }


def _operation(endpoint: str, method: str, params: list[dict[str, Any]]) -> dict[str, Any]:
    blueprint, _, view = endpoint.partition(".")
    fn = current_app.view_functions.get(endpoint)
    doc = (fn.__doc__ or "").strip().splitlines() if fn else []
    op: dict[str, Any] = {
        "operationId": f"{method}_{view or blueprint}",
        "summary": doc[0] if doc else view.replace("_", " "),
        "tags": [blueprint.removesuffix("_api")],
        "responses": {"200": {"description": "OK"}},
    }
    if method == "post":
        op["responses"]["201"] = {"description": "Created"}
    for code in _PROBLEM_CODES:
        op["responses"][code] = {"$ref": f"#/components/responses/Problem{code}"}
    if params:
        op["parameters"] = params
    return op


def build_spec() -> dict[str, Any]:
    paths: dict[str, dict[str, Any]] = {}
    for rule in sorted(current_app.url_map.iter_rules(), key=lambda r: r.rule):
        if not rule.rule.startswith("/api/") and rule.rule != "/healthz":
            continue
        params: list[dict[str, Any]] = []

        def _swap(m: re.Match[str], params: list[dict[str, Any]] = params) -> str:
            conv, name = m.group(1), m.group(2)
            params.append(
                {"name": name, "in": "path", "required": True, "schema": {"type": _PARAM_TYPES.get(conv or "", "string")}}
            )
            return "{" + name + "}"

        path = _CONVERTER.sub(_swap, rule.rule)
        item = paths.setdefault(path, {})
        for method in sorted((rule.methods or set()) - {"HEAD", "OPTIONS"}):
            item[method.lower()] = _operation(rule.endpoint, method.lower(), params)
    tags = sorted({op["tags"][0] for item in paths.values() for op in item.values()})
    return {
        "openapi": "3.0.3",
        "info": {
            "title": "RANKUP API",
            "version": current_app.config.get("API_VERSION", "1.0.0"),
            "description": "Stock rankings, market data and community API. Errors are RFC7807 problem+json.",
        },
        "servers": [{"url": current_app.config.get("APP_BASE_URL") or "/"}],
        "tags": [{"name": t} for t in tags],
        "security": [{"BearerAuth": []}, {"CookieAuth": []}, {}],
        "components": {
            "securitySchemes": {
                "BearerAuth": {"type": "http", "scheme": "bearer"},
                "CookieAuth": {"type": "apiKey", "in": "cookie", "name": "session"},
                "CsrfToken": {
                    "type": "apiKey",
                    "in": "header",
                    "name": "X-CSRF-Token",
                    "description": "Mirror of the csrf_token cookie; required for cookie-authenticated writes",
                },
            },
            "schemas": _schemas(),
            "responses": _problem_responses(),
        },
        "paths": paths,
    }


@bp.get("/api/docs")
def openapi_spec():
    """OpenAPI document for this API."""
    resp = jsonify(build_spec())
    resp.headers["Access-Control-Allow-Origin"] = "*"
    return resp


__all__ = ["bp", "build_spec"]
