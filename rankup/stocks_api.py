"""Stock listing API.

Read-only; list and quote responses are cache-aside through the `stock`
namespace so repeated dashboard polling stays off the database.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from . import cache
from .db import get_session
from .http_limits import has_search_term, rate_limited
from .market_service import list_stocks, stock_detail, stock_stats
from .pagination import make_page_response, parse_page_params

bp = Blueprint("stocks_api", __name__, url_prefix="/api/stocks")


@bp.get("")
@rate_limited("api")
@rate_limited("search", when=has_search_term)
def list_stocks_route():
    page_req = parse_page_params(request.args, default_limit=20, max_limit=100)
    params = {
        "market": request.args.get("market") or None,
        "search": (request.args.get("search") or "").strip() or None,
        "sortBy": request.args.get("sortBy") or "rank",
        "sortOrder": "desc" if request.args.get("sortOrder") == "desc" else "asc",
        "page": page_req["page"],
        "limit": page_req["limit"],
    }

    def fetch():
        db = get_session()
        try:
            items, total = list_stocks(
                db,
                market=params["market"],
                search=params["search"],
                sort_by=params["sortBy"],
                sort_order=params["sortOrder"],
                page_req=page_req,
            )
            return make_page_response(items, page_req, total)
        finally:
            db.close()

    ttl = cache.SEARCH_RESULTS if params["search"] else cache.STOCK_LIST
    return jsonify(cache.stock_cache.get_or_set(cache.make_cache_key("list", params), fetch, ttl))


@bp.get("/stats")
def stats():
    def fetch():
        db = get_session()
        try:
            return stock_stats(db)
        finally:
            db.close()

    return jsonify({"data": cache.stock_cache.get_or_set("stats", fetch, cache.STOCK_LIST)})


@bp.get("/<symbol>")
@rate_limited("api")
def get_stock(symbol: str):
    symbol = symbol.strip().upper()
    data = cache.stock_cache.get(f"quote:{symbol}")
    if data is None:
        db = get_session()
        try:
            data = stock_detail(db, symbol)
        finally:
            db.close()
        cache.stock_cache.set(f"quote:{symbol}", data, cache.STOCK_QUOTE)
    return jsonify({"data": data})
