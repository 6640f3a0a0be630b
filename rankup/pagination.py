from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy.orm import Query
from typing_extensions import TypedDict

T = TypeVar("T")

__all__ = [
    "PageRequest",
    "PageMeta",
    "PageResponse",
    "parse_page_params",
    "make_page_response",
    "paginate_query",
    "paginate_sequence",
    "PaginationError",
]

# ---- Contracts -----------------------------------------------------------------


class PageRequest(TypedDict):
    page: int  # 1-based
    limit: int


class PageMeta(TypedDict):
    page: int
    limit: int
    total: int
    totalPages: int
    hasNext: bool
    hasPrev: bool


class PageResponse(TypedDict, Generic[T]):  # type: ignore[misc]
    data: list[T]
    pagination: PageMeta


class PaginationError(ValueError):
    """Raised when pagination query params are invalid."""


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def parse_page_params(
    args: Mapping[str, Any],
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> PageRequest:
    """Parse & validate `page` / `limit` from a dict-like (e.g. request.args).

    Applies defaults and caps limit at ``max_limit``. Raises PaginationError on
    non-numeric or non-positive input.
    """
    page_raw = args.get("page")
    limit_raw = args.get("limit")
    try:
        page = int(page_raw) if page_raw else DEFAULT_PAGE
    except ValueError as e:
        raise PaginationError("invalid page parameter") from e
    try:
        limit = int(limit_raw) if limit_raw else default_limit
    except ValueError as e:
        raise PaginationError("invalid limit parameter") from e
    if page < 1:
        raise PaginationError("page must be >= 1")
    if limit < 1:
        raise PaginationError("limit must be >= 1")
    if limit > max_limit:
        limit = max_limit
    return PageRequest(page=page, limit=limit)


def make_page_response(items: Sequence[T], page_req: PageRequest, total: int) -> PageResponse[T]:
    pages = (total + page_req["limit"] - 1) // page_req["limit"] if page_req["limit"] else 0
    return PageResponse(  # type: ignore[call-arg]
        data=list(items),
        pagination=PageMeta(
            page=page_req["page"],
            limit=page_req["limit"],
            total=total,
            totalPages=pages,
            hasNext=page_req["page"] < pages,
            hasPrev=page_req["page"] > 1,
        ),
    )


def paginate_query(q: Query, page_req: PageRequest) -> tuple[list[Any], int]:
    """Apply offset/limit to a legacy-style Query; returns (rows, total)."""
    total = q.order_by(None).count()
    start = (page_req["page"] - 1) * page_req["limit"]
    return q.offset(start).limit(page_req["limit"]).all(), total


def paginate_sequence(seq: Sequence[T], page_req: PageRequest) -> PageResponse[T]:
    start = (page_req["page"] - 1) * page_req["limit"]
    end = start + page_req["limit"]
    return make_page_response(seq[start:end], page_req, len(seq))
