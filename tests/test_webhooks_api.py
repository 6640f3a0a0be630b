import json

import pytest
import requests


class _FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


@pytest.fixture
def outbox(monkeypatch):
    """Capture outgoing webhook POSTs instead of hitting the network."""
    sent = []
    state = {"status": 200}

    def _post(url, data=None, headers=None, timeout=None):
        sent.append({"url": url, "body": data.decode("utf-8"), "headers": headers, "timeout": timeout})
        return _FakeResponse(state["status"])

    monkeypatch.setattr("rankup.webhooks.requests.post", _post)
    return type("Outbox", (), {"sent": sent, "state": state})


def _register(admin, events=("post.created",)):
    resp = admin.client.post("/api/webhooks", json={"url": "https://hooks.example.com/in", "events": list(events)})
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]


def test_register_requires_admin(client, member):
    body = {"url": "https://hooks.example.com/in", "events": ["post.created"]}
    assert client.post("/api/webhooks", json=body).status_code == 401
    assert member.client.post("/api/webhooks", json=body).status_code == 403


def test_register_returns_secret_once(admin):
    data = _register(admin)
    assert len(data["secret"]) == 64
    assert data["events"] == ["post.created"]


def test_register_validation(admin):
    bad_event = admin.client.post("/api/webhooks", json={"url": "https://x.example.com", "events": ["stock.crash"]})
    assert bad_event.status_code == 400
    assert bad_event.get_json()["errors"][0]["field"] == "events"
    bad_url = admin.client.post("/api/webhooks", json={"url": "ftp:/nowhere", "events": ["post.created"]})
    assert bad_url.status_code == 400
    assert admin.client.post("/api/webhooks", json={"url": "https://x.example.com", "events": []}).status_code == 400


def test_list_events_requires_login(client, member):
    assert client.get("/api/webhooks").status_code == 401
    names = {e["name"] for e in member.client.get("/api/webhooks").get_json()["events"]}
    assert {"post.created", "payment.completed", "stock.alert"} <= names


def test_send_test_delivery(admin, outbox):
    hook = _register(admin)
    resp = admin.client.post(f"/api/webhooks/{hook['id']}/test")
    assert resp.get_json()["delivered"] is True
    assert outbox.sent[0]["url"] == "https://hooks.example.com/in"
    assert admin.client.post("/api/webhooks/9999/test").status_code == 404


def test_post_created_is_signed_and_dispatched(admin, member, outbox):
    from rankup.webhooks import sign, verify_signature

    hook = _register(admin)
    member.client.post("/api/posts", json={"title": "Hook me", "content": "body", "category": "free"})
    assert len(outbox.sent) == 1
    call = outbox.sent[0]
    payload = json.loads(call["body"])
    assert payload["event"] == "post.created"
    assert payload["data"]["title"] == "Hook me"
    assert call["headers"]["X-Webhook-Signature"] == sign(call["body"], hook["secret"])
    assert verify_signature(call["body"], call["headers"]["X-Webhook-Signature"], hook["secret"])
    assert call["headers"]["X-Webhook-ID"] == payload["id"]
    assert call["timeout"] == 30


def test_unsubscribed_event_is_not_sent(admin, member, outbox):
    _register(admin, events=("payment.completed",))
    member.client.post("/api/posts", json={"title": "Quiet", "content": "body", "category": "free"})
    assert outbox.sent == []


def test_failed_delivery_does_not_break_request(admin, member, outbox, caplog):
    _register(admin)
    outbox.state["status"] = 500
    with caplog.at_level("ERROR", logger="rankup.webhooks"):
        resp = member.client.post("/api/posts", json={"title": "Still works", "content": "body", "category": "free"})
    assert resp.status_code == 201
    assert "Webhook delivery failed" in caplog.text


def test_send_rejects_unknown_event(app):
    from rankup import webhooks

    with app.app_context(), pytest.raises(ValueError):
        webhooks.send("user.exploded", {})


def test_signature_mismatch():
    from rankup.webhooks import sign, verify_signature

    sig = sign('{"a":1}', "secret")
    assert sig.startswith("sha256=")
    assert not verify_signature('{"a":2}', sig, "secret")
    assert not verify_signature('{"a":1}', sig, "other")
    assert not verify_signature('{"a":1}', "", "secret")
