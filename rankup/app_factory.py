from __future__ import annotations

import logging
import time
import uuid
from typing import Any

import click
from dotenv import load_dotenv
from flask import Flask, Response, g, request

from . import cache, rate_limiter
from .ab_test_api import bp as ab_test_bp
from .admin_api import bp as admin_api_bp
from .app_sessions import current_user_id
from .audit import AuditRepo
from .auth import bp as auth_bp
from .auth import ensure_bootstrap_admin
from .bookmarks_api import bp as bookmarks_bp
from .comments_api import bp as comments_bp
from .config import Config
from .docs_api import bp as docs_bp
from .db import create_all, init_engine, remove_session
from .errors import register_error_handlers
from .experiments import build_default_manager
from .feature_flags import FeatureRegistry
from .feature_flags_api import bp as feature_flags_bp
from .health_api import bp as health_bp
from .http_limits import apply_rate_limit_headers
from .likes_api import bp as likes_bp
from .logging_setup import get_request_logger, install_support_log_handler
from .market_indices_api import bp as market_indices_bp
from .metrics import set_metrics
from .metrics import timing as metrics_timing
from .metrics_logging import LoggingMetrics
from .news_api import bp as news_bp
from .notifications_api import bp as notifications_bp
from .posts_api import bp as posts_bp
from .recommendations_api import bp as recommendations_bp
from .reports_api import bp as reports_bp
from .security import init_security
from .stocks_api import bp as stocks_bp
from .user_api import bp as user_api_bp
from .webhooks_api import bp as webhooks_bp

BLUEPRINTS = (
    health_bp,
    auth_bp,
    stocks_bp,
    market_indices_bp,
    news_bp,
    posts_bp,
    comments_bp,
    likes_bp,
    bookmarks_bp,
    reports_bp,
    notifications_bp,
    user_api_bp,
    recommendations_bp,
    feature_flags_bp,
    ab_test_bp,
    webhooks_bp,
    admin_api_bp,
    docs_bp,
)


def create_app(config_override: dict[str, Any] | None = None) -> Flask:
    # Load .env for local development; real env vars win
    load_dotenv(override=False)
    app = Flask(__name__)

    # --- Configuration ---
    cfg = Config.from_env()
    if config_override:
        known = {k: v for k, v in config_override.items() if hasattr(cfg, k)}
        if known:
            cfg.override(known)
    app.config.update(cfg.to_flask_dict())
    if config_override:
        for k, v in config_override.items():  # also allow direct Flask config keys
            if k.isupper():
                app.config[k] = v

    # --- DB setup ---
    init_engine(app.config["SQLALCHEMY_DATABASE_URI"], force=bool(app.config.get("TESTING")))
    create_all()
    app.logger.info("DB_URL=%s", app.config["SQLALCHEMY_DATABASE_URI"])

    # --- Cache + rate limiter backends ---
    cache.configure(app.config.get("CACHE_BACKEND"), app.config.get("REDIS_URL"))
    rate_limiter.configure(app.config.get("RATE_LIMIT_BACKEND"), app.config.get("REDIS_URL"))

    # --- Security middleware (CORS, CSRF, headers) ---
    init_security(app)

    # --- Metrics backend wiring ---
    if (app.config.get("METRICS_BACKEND") or "noop") == "log":
        set_metrics(LoggingMetrics())
        app.logger.info("Metrics backend initialized: log")

    # --- Feature flags + experiments ---
    app.feature_registry = FeatureRegistry()  # type: ignore[attr-defined]
    app.experiments = build_default_manager()  # type: ignore[attr-defined]

    # --- Error handling ---
    register_error_handlers(app)

    # --- Logging / timing middleware ---
    log = get_request_logger()

    @app.before_request
    def _before_req() -> None:
        g._t0 = time.perf_counter()
        g.request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())

    @app.after_request
    def _after_req(resp: Response) -> Response:
        dur_ms = int((time.perf_counter() - getattr(g, "_t0", time.perf_counter())) * 1000)
        rid = getattr(g, "request_id", None) or str(uuid.uuid4())
        resp.headers["X-Request-Id"] = rid
        resp.headers["X-Request-Duration-ms"] = str(dur_ms)
        apply_rate_limit_headers(resp)
        if "Cache-Control" not in resp.headers:
            resp.headers["Cache-Control"] = "no-store"
        try:
            user_id = current_user_id()
        except Exception:  # session lookup must never break the response
            user_id = None
        log.info(
            {
                "request_id": rid,
                "user_id": user_id,
                "method": request.method,
                "path": request.path,
                "status": resp.status_code,
                "duration_ms": dur_ms,
            }
        )
        metrics_timing("http.request", dur_ms, {"method": request.method, "status": str(resp.status_code)})
        return resp

    @app.teardown_appcontext
    def _cleanup(exc: BaseException | None) -> None:
        remove_session()

    for bp in BLUEPRINTS:
        app.register_blueprint(bp)

    install_support_log_handler()

    with app.app_context():
        ensure_bootstrap_admin()

    @app.cli.command("purge-audit")
    @click.option("--days", type=int, default=90, show_default=True)
    def purge_audit(days: int) -> None:
        """Delete audit events older than DAYS."""
        removed = AuditRepo().purge_older_than(days)
        click.echo(f"purged {removed} audit events older than {days} days")

    @app.cli.command("seed-demo")
    def seed_demo_cmd() -> None:
        """Load demo stocks, indices, news, users and posts."""
        from .seed import seed_demo

        counts = seed_demo()
        click.echo(", ".join(f"{k}={v}" for k, v in counts.items()))

    logging.getLogger(__name__).info("RANKUP app created (env=%s)", app.config.get("APP_ENV"))
    return app


__all__ = ["create_app", "BLUEPRINTS"]
