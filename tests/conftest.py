from __future__ import annotations

import os
import sys
from types import SimpleNamespace

import pytest

# Path setup before any project imports
ROOT = os.path.dirname(__file__)
PARENT = os.path.abspath(os.path.join(ROOT, ".."))
if PARENT not in sys.path:  # pragma: no cover - environment dependent
    sys.path.insert(0, PARENT)

_ENV_VARS = (
    "DATABASE_URL",
    "CACHE_BACKEND",
    "RATE_LIMIT_BACKEND",
    "REDIS_URL",
    "WEBHOOK_URL",
    "WEBHOOK_SECRET",
    "METRICS_BACKEND",
    "BOOTSTRAP_ADMIN_EMAIL",
    "BOOTSTRAP_ADMIN_PASSWORD",
    "STRICT_CSRF",
)

PASSWORD = "Passw0rd!"


def _lazy_imports():  # isolate heavy imports
    from rankup import cache, rate_limiter
    from rankup.app_factory import create_app
    from rankup.metrics import reset_metrics

    return create_app, cache, rate_limiter, reset_metrics


@pytest.fixture
def app(tmp_path, monkeypatch):
    create_app, cache, rate_limiter, reset_metrics = _lazy_imports()
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    cache._test_reset()
    rate_limiter._test_reset()
    reset_metrics()
    url = f"sqlite:///{tmp_path / 'test.db'}"
    app = create_app({"TESTING": True, "SECRET_KEY": "test", "database_url": url})
    yield app
    cache._test_reset()
    rate_limiter._test_reset()


@pytest.fixture
def client(app):
    c = app.test_client()
    c.environ_base = {}
    return c


@pytest.fixture
def db(app):
    from rankup.db import get_new_session

    s = get_new_session()
    yield s
    s.close()


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def make_user(app):
    """Insert a user directly; returns the new id."""
    from werkzeug.security import generate_password_hash

    from rankup.db import get_new_session
    from rankup.models import User

    counter = {"n": 0}

    def _make(email: str | None = None, *, role: str = "user", plan: str = "free", password: str = PASSWORD, **extra):
        counter["n"] += 1
        s = get_new_session()
        try:
            u = User(
                email=email or f"user{counter['n']}@example.com",
                name=extra.pop("name", f"User {counter['n']}"),
                password_hash=generate_password_hash(password),
                provider="email",
                role=role,
                plan=plan,
                **extra,
            )
            s.add(u)
            s.commit()
            return u.id
        finally:
            s.close()

    return _make


@pytest.fixture
def login_as(app, make_user):
    """Return a client authenticated with a fresh server-side session (Bearer token).

    Sessions are created directly so tests never trip the login rate limit.
    """
    from rankup.app_sessions import create_session
    from rankup.db import get_new_session
    from rankup.models import User

    def _login(role: str = "user", *, user_id: int | None = None, **kw):
        uid = user_id or make_user(role=role, **kw)
        s = get_new_session()
        try:
            token, row = create_session(s, s.get(User, uid), device_info="pytest")
            session_id = row.id
        finally:
            s.close()
        c = app.test_client()
        c.environ_base = {"HTTP_AUTHORIZATION": f"Bearer {token}"}
        return SimpleNamespace(client=c, user_id=uid, token=token, session_id=session_id)

    return _login


@pytest.fixture
def member(login_as):
    return login_as("user")


@pytest.fixture
def other_member(login_as):
    return login_as("user")


@pytest.fixture
def admin(login_as):
    return login_as("admin")


@pytest.fixture
def stocks(app):
    """Three stocks across both markets; returns {symbol: id}."""
    from rankup.db import get_new_session
    from rankup.models import Stock

    rows = [
        Stock(symbol="005930", name="Samsung Electronics", market="KOSPI", current_price=71200, change=800,
              change_percent=1.14, volume=1000, market_cap=500, score=92.0, rank=1),
        Stock(symbol="000660", name="SK Hynix", market="KOSPI", current_price=178500, change=-1500,
              change_percent=-0.83, volume=2000, market_cap=300, score=90.0, rank=2),
        Stock(symbol="247540", name="Ecopro BM", market="KOSDAQ", current_price=231000, change=0,
              change_percent=0, volume=3000, market_cap=100, score=60.0, rank=3),
    ]
    s = get_new_session()
    try:
        s.add_all(rows)
        s.commit()
        return {r.symbol: r.id for r in rows}
    finally:
        s.close()


@pytest.fixture
def make_post(member):
    def _make(actor=None, **fields):
        actor = actor or member
        body = {"title": "Hello", "content": "First post", "category": "free"}
        body.update(fields)
        resp = actor.client.post("/api/posts", json=body)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["data"]

    return _make
