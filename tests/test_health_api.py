def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_health_reports_database_and_echoes_request_id(client):
    resp = client.get("/api/health", headers={"X-Request-Id": "req-123"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert body["uptime"] >= 0
    assert resp.headers["X-Request-Id"] == "req-123"


def test_health_generates_request_id(client):
    assert client.get("/api/health").headers.get("X-Request-Id")


def test_health_unhealthy_when_database_down(client, monkeypatch):
    from sqlalchemy.exc import OperationalError

    def _down():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr("rankup.health_api.ping", _down)
    resp = client.get("/api/health")
    assert resp.status_code == 503
    assert resp.get_json()["status"] == "unhealthy"


def test_request_timing_metric(client, monkeypatch):
    from rankup import metrics as metrics_mod

    samples = []

    class Recorder:
        def increment(self, name, tags=None):
            pass

        def timing(self, name, value_ms, tags=None):
            samples.append((name, value_ms, dict(tags or {})))

    monkeypatch.setattr(metrics_mod, "_metrics", Recorder())
    client.get("/healthz")
    name, value_ms, tags = samples[-1]
    assert name == "http.request"
    assert value_ms >= 0
    assert tags == {"method": "GET", "status": "200"}


def test_logging_metrics_backend(caplog):
    from rankup.metrics_logging import LoggingMetrics

    with caplog.at_level("INFO", logger="rankup.metrics"):
        LoggingMetrics().increment("cache.miss", {"ns": "stock"})
        LoggingMetrics().timing("http.request", 12.0, {"status": "200", "method": "GET"})
    assert "metric counter name=cache.miss tags=ns=stock" in caplog.text
    assert "metric timing name=http.request ms=12.0 tags=method=GET,status=200" in caplog.text
