from __future__ import annotations

from flask import Blueprint, jsonify, request

from . import cache
from .db import get_session
from .market_service import list_indices

bp = Blueprint("market_indices_api", __name__, url_prefix="/api/market-indices")


@bp.get("")
def list_indices_route():
    country = (request.args.get("country") or "").strip().upper() or None

    def fetch():
        db = get_session()
        try:
            return list_indices(db, country)
        finally:
            db.close()

    key = cache.make_cache_key("indices", {"country": country})
    return jsonify({"data": cache.stock_cache.get_or_set(key, fetch, cache.MARKET_INDEX)})
