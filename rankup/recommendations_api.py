from __future__ import annotations

from flask import Blueprint, jsonify, request

from .app_sessions import get_session as get_auth_session
from .db import get_session
from .recommendation_service import popular_posts, recommend_for_user
from .validation import coerce_int

bp = Blueprint("recommendations_api", __name__, url_prefix="/api/recommendations")


@bp.get("")
def recommendations():
    limit = coerce_int(request.args.get("limit"), 10, minimum=1, maximum=50)
    sess = get_auth_session()
    db = get_session()
    try:
        if sess is None:
            return jsonify({"data": popular_posts(db, limit), "personalized": False})
        return jsonify({"data": recommend_for_user(db, sess["user_id"], limit), "personalized": True})
    finally:
        db.close()
