from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    secret_key: str = "change-me"
    database_url: str = "sqlite:///dev.db"
    environment: str = "development"
    cors_allowed_origins: list[str] = field(default_factory=list)
    session_ttl_seconds: int = 30 * 24 * 3600  # 30 days
    cache_backend: str = "memory"
    rate_limit_backend: str = "memory"
    redis_url: str | None = None
    webhook_url: str | None = None
    webhook_secret: str | None = None
    app_base_url: str = "http://localhost:5000"
    strict_csrf_env: bool = False
    metrics_backend: str = "noop"
    bootstrap_admin_email: str | None = None
    bootstrap_admin_password: str | None = None

    @classmethod
    def from_env(cls) -> Config:
        cors = os.getenv("CORS_ALLOW_ORIGINS", "")
        return cls(
            secret_key=os.getenv("SECRET_KEY", "change-me"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///dev.db"),
            environment=os.getenv("APP_ENV", "development"),
            cors_allowed_origins=[o for o in [c.strip() for c in cors.split(",")] if o],
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", str(30 * 24 * 3600))),
            cache_backend=os.getenv("CACHE_BACKEND", "memory").strip().lower() or "memory",
            rate_limit_backend=os.getenv("RATE_LIMIT_BACKEND", "memory").strip().lower() or "memory",
            redis_url=os.getenv("REDIS_URL") or None,
            webhook_url=os.getenv("WEBHOOK_URL") or None,
            webhook_secret=os.getenv("WEBHOOK_SECRET") or None,
            app_base_url=os.getenv("APP_BASE_URL", "http://localhost:5000").rstrip("/"),
            strict_csrf_env=_env_flag("STRICT_CSRF"),
            metrics_backend=os.getenv("METRICS_BACKEND", "noop").strip().lower() or "noop",
            bootstrap_admin_email=os.getenv("BOOTSTRAP_ADMIN_EMAIL") or None,
            bootstrap_admin_password=os.getenv("BOOTSTRAP_ADMIN_PASSWORD") or None,
        )

    def override(self, d: dict):
        for k, v in d.items():
            if hasattr(self, k):
                setattr(self, k, v)

    def to_flask_dict(self):
        return {
            "SECRET_KEY": self.secret_key,
            "SQLALCHEMY_DATABASE_URI": self.database_url,
            "APP_ENV": self.environment,
            "CORS_ALLOWED_ORIGINS": self.cors_allowed_origins,
            "SESSION_TTL_SECONDS": self.session_ttl_seconds,
            "CACHE_BACKEND": self.cache_backend,
            "RATE_LIMIT_BACKEND": self.rate_limit_backend,
            "REDIS_URL": self.redis_url,
            "WEBHOOK_URL": self.webhook_url,
            "WEBHOOK_SECRET": self.webhook_secret,
            "APP_BASE_URL": self.app_base_url,
            "STRICT_CSRF": self.strict_csrf_env,
            "METRICS_BACKEND": self.metrics_backend,
            "BOOTSTRAP_ADMIN_EMAIL": self.bootstrap_admin_email,
            "BOOTSTRAP_ADMIN_PASSWORD": self.bootstrap_admin_password,
            # Harden session cookie defaults (still allow override in tests)
            "SESSION_COOKIE_HTTPONLY": True,
            "SESSION_COOKIE_SAMESITE": "Lax",
        }
