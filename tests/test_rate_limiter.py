import pytest

from rankup import metrics as metrics_mod


@pytest.fixture
def limited_client(app):
    from rankup.http_limits import rate_limited

    @rate_limited("strict")
    def _limited():
        return {"ok": True}

    app.add_url_rule("/_limit/test", "limit_test", _limited)
    return app.test_client()


def test_within_quota_allows(limited_client):
    for _ in range(10):
        r = limited_client.get("/_limit/test")
        assert r.status_code == 200, r.get_json()
    assert r.headers["X-RateLimit-Limit"] == "10"
    assert r.headers["X-RateLimit-Remaining"] == "0"
    r = limited_client.get("/_limit/test")
    assert r.status_code == 429
    data = r.get_json()
    assert data["status"] == 429 and data["type"].endswith("/rate_limited")
    assert int(r.headers["Retry-After"]) >= 0


def test_limits_are_per_identifier(limited_client):
    for _ in range(11):
        limited_client.get("/_limit/test", headers={"X-Forwarded-For": "1.1.1.1"})
    assert limited_client.get("/_limit/test", headers={"X-Forwarded-For": "1.1.1.1, 10.0.0.1"}).status_code == 429
    assert limited_client.get("/_limit/test", headers={"X-Forwarded-For": "2.2.2.2"}).status_code == 200


def test_window_reset(limited_client, monkeypatch):
    import rankup.rate_limiter as rl_mod

    for _ in range(10):
        limited_client.get("/_limit/test")
    assert limited_client.get("/_limit/test").status_code == 429
    real = rl_mod.time.time
    monkeypatch.setattr(rl_mod.time, "time", lambda: real() + 61)
    assert limited_client.get("/_limit/test").status_code == 200


def test_metrics_allow_and_block(limited_client, monkeypatch):
    events: list[tuple[str, dict]] = []

    class TestMetrics:
        def increment(self, name, tags=None):
            events.append((name, dict(tags or {})))

        def timing(self, name, value_ms, tags=None):
            pass

    monkeypatch.setattr(metrics_mod, "_metrics", TestMetrics())
    for _ in range(12):
        limited_client.get("/_limit/test")
    allow = [e for e in events if e[0] == "rate_limit.hit" and e[1]["outcome"] == "allow"]
    block = [e for e in events if e[0] == "rate_limit.hit" and e[1]["outcome"] == "block"]
    assert len(allow) == 10
    assert len(block) == 2


def test_noop_backend(monkeypatch, app):
    import rankup.rate_limiter as rl

    monkeypatch.setenv("RATE_LIMIT_BACKEND", "noop")
    rl._test_reset()
    limiter = rl.get_rate_limiter()
    assert all(limiter.allow("k", quota=1, per_seconds=60) for _ in range(5))


def test_memory_limiter_counts_and_resets():
    from rankup.rate_limiter_memory import MemoryRateLimiter

    lim = MemoryRateLimiter()
    assert lim.allow("auth:1.2.3.4", quota=2, per_seconds=3600)
    assert lim.remaining("auth:1.2.3.4", quota=2, per_seconds=3600) == 1
    assert lim.allow("auth:1.2.3.4", quota=2, per_seconds=3600)
    assert not lim.allow("auth:1.2.3.4", quota=2, per_seconds=3600)
    assert 0 < lim.retry_after("auth:1.2.3.4", per_seconds=3600) <= 3600
    lim.reset("auth:1.2.3.4")
    assert lim.remaining("auth:1.2.3.4", quota=2, per_seconds=3600) == 2


def test_window_start_alignment():
    from rankup.rate_limiter import window_start

    assert window_start(125, 60) == 120
    assert window_start(120, 60) == 120


def test_unknown_limit_type():
    from rankup.http_limits import get_limit

    with pytest.raises(ValueError):
        get_limit("bogus")


@pytest.mark.parametrize("path", ["/api/stocks?search=sam", "/api/news?search=chip", "/api/posts?search=hello"])
def test_search_limit_applies_only_with_search_term(client, stocks, path):
    for _ in range(30):
        assert client.get(path).status_code == 200
    blocked = client.get(path)
    assert blocked.status_code == 429
    assert blocked.headers["X-RateLimit-Limit"] == "30"
    plain = path.split("?")[0]
    assert client.get(plain).status_code == 200
    assert client.get(plain + "?search=%20").status_code == 200


def test_memory_limiter_drops_closed_windows(monkeypatch):
    from rankup import rate_limiter_memory as rlm

    lim = rlm.MemoryRateLimiter()
    for i in range(5):
        lim.allow(f"api:10.0.0.{i}", quota=10, per_seconds=60)
    real = rlm.time.time
    monkeypatch.setattr(rlm.time, "time", lambda: real() + 125)
    lim.allow("api:10.0.0.99", quota=10, per_seconds=60)
    assert list(lim._buckets) == ["api:10.0.0.99"]
