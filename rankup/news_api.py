"""News feed API.

Lists are cached for NEWS_LIST seconds; the detail view is never cached since
every read bumps its view counter.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from . import cache
from .db import get_session
from .http_limits import has_search_term, rate_limited
from .market_service import get_news, list_news
from .pagination import make_page_response, parse_page_params
from .validation import coerce_bool

bp = Blueprint("news_api", __name__, url_prefix="/api/news")


@bp.get("")
@rate_limited("api")
@rate_limited("search", when=has_search_term)
def list_news_route():
    page_req = parse_page_params(request.args, default_limit=10, max_limit=50)
    is_hot_raw = request.args.get("isHot")
    params = {
        "category": request.args.get("category") or None,
        "isHot": None if is_hot_raw in (None, "") else coerce_bool(is_hot_raw),
        "search": (request.args.get("search") or "").strip() or None,
        "page": page_req["page"],
        "limit": page_req["limit"],
    }

    def fetch():
        db = get_session()
        try:
            items, total = list_news(
                db,
                category=params["category"],
                is_hot=params["isHot"],
                search=params["search"],
                page_req=page_req,
            )
            return make_page_response(items, page_req, total)
        finally:
            db.close()

    ttl = cache.SEARCH_RESULTS if params["search"] else cache.NEWS_LIST
    return jsonify(cache.news_cache.get_or_set(cache.make_cache_key("list", params), fetch, ttl))


@bp.get("/<int:news_id>")
def get_news_route(news_id: int):
    db = get_session()
    try:
        return jsonify({"data": get_news(db, news_id)})
    finally:
        db.close()
