import logging
import re

from rankup import totp


def _link_token(caplog, marker: str) -> str:
    for rec in caplog.records:
        msg = rec.getMessage()
        if marker in msg:
            m = re.search(r"token=(\S+)", msg)
            if m:
                return m.group(1)
    raise AssertionError(f"no {marker!r} link logged")


def test_register_creates_user_201(client):
    resp = client.post("/api/auth/register", json={"email": "New@Example.com", "password": "longenough", "name": "Newbie"})
    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["email"] == "new@example.com"
    assert data["role"] == "user"
    assert data["plan"] == "free"
    assert "passwordHash" not in data and "password_hash" not in data


def test_register_duplicate_email_409(client):
    body = {"email": "dup@example.com", "password": "longenough"}
    assert client.post("/api/auth/register", json=body).status_code == 201
    resp = client.post("/api/auth/register", json=body)
    assert resp.status_code == 409
    assert resp.get_json()["detail"] == "email_in_use"


def test_register_short_password_400(client):
    resp = client.post("/api/auth/register", json={"email": "short@example.com", "password": "abc"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert resp.mimetype == "application/problem+json"
    assert body["errors"][0]["field"] == "password"


def test_login_and_me_via_cookie_session(client, make_user, password):
    make_user("login@example.com")
    resp = client.post("/api/auth/login", json={"email": "login@example.com", "password": password})
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["token"] and data["expiresAt"]
    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.get_json()["data"]["email"] == "login@example.com"


def test_login_bearer_token_works_without_cookie(app, client, make_user, password):
    make_user("bearer@example.com")
    token = client.post("/api/auth/login", json={"email": "bearer@example.com", "password": password}).get_json()["data"]["token"]
    fresh = app.test_client()
    resp = fresh.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


def test_login_wrong_password_401(client, make_user):
    make_user("wrong@example.com")
    resp = client.post("/api/auth/login", json={"email": "wrong@example.com", "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "invalid_credentials"


def test_login_suspended_403(client, make_user, password):
    make_user("susp@example.com", suspended=True)
    resp = client.post("/api/auth/login", json={"email": "susp@example.com", "password": password})
    assert resp.status_code == 403


def test_login_rate_limited_after_five_attempts(client, make_user, password):
    make_user("limited@example.com")
    for _ in range(5):
        r = client.post("/api/auth/login", json={"email": "limited@example.com", "password": "bad-password"})
        assert r.status_code == 401
        assert r.headers.get("X-RateLimit-Limit") == "5"
    r = client.post("/api/auth/login", json={"email": "limited@example.com", "password": password})
    assert r.status_code == 429
    assert int(r.headers["Retry-After"]) > 0


def test_me_requires_login(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.get_json()["status"] == 401


def test_logout_revokes_session(member):
    assert member.client.post("/api/auth/logout").status_code == 200
    assert member.client.get("/api/auth/me").status_code == 401


def test_password_reset_flow(app, client, make_user, login_as, caplog):
    uid = make_user("reset@example.com")
    existing = login_as(user_id=uid)
    caplog.set_level(logging.INFO, logger="rankup.auth")
    resp = client.post("/api/auth/forgot-password", json={"email": "reset@example.com"})
    assert resp.status_code == 200
    token = _link_token(caplog, "Password reset link")

    check = client.get(f"/api/auth/forgot-password?token={token}").get_json()
    assert check == {"valid": True, "email": "reset@example.com"}

    bad = client.post("/api/auth/reset-password", json={"token": token, "password": "NewPassw0rd", "confirmPassword": "Other1234"})
    assert bad.status_code == 400

    ok = client.post("/api/auth/reset-password", json={"token": token, "password": "NewPassw0rd", "confirmPassword": "NewPassw0rd"})
    assert ok.status_code == 200
    # Token is single use and every old session is gone
    assert client.get(f"/api/auth/forgot-password?token={token}").get_json()["valid"] is False
    assert existing.client.get("/api/auth/me").status_code == 401
    login = client.post("/api/auth/login", json={"email": "reset@example.com", "password": "NewPassw0rd"})
    assert login.status_code == 200


def test_forgot_password_unknown_email_still_200(client):
    resp = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    assert resp.status_code == 200


def test_email_verification_flow(member, caplog):
    caplog.set_level(logging.INFO, logger="rankup.auth")
    assert member.client.post("/api/auth/verify-email").status_code == 200
    token = _link_token(caplog, "Email verification link")
    resp = member.client.get(f"/api/auth/verify-email?token={token}")
    assert resp.status_code == 200
    assert resp.get_json()["verified"] is True
    assert member.client.get("/api/auth/me").get_json()["data"]["emailVerified"] is True
    assert member.client.post("/api/auth/verify-email").status_code == 409


def test_session_listing_and_revocation(login_as, make_user):
    uid = make_user()
    first = login_as(user_id=uid)
    second = login_as(user_id=uid)
    listing = first.client.get("/api/auth/sessions").get_json()["data"]
    assert len(listing) == 2
    current = [s for s in listing if s["isCurrent"]]
    assert len(current) == 1 and current[0]["id"] == first.session_id

    resp = first.client.delete("/api/auth/sessions")
    assert resp.get_json()["revoked"] == 1
    assert second.client.get("/api/auth/me").status_code == 401
    assert first.client.get("/api/auth/me").status_code == 200


def test_revoke_foreign_session_404(member, other_member):
    resp = member.client.delete(f"/api/auth/sessions/{other_member.session_id}")
    assert resp.status_code == 404


def test_two_factor_enable_and_login(client, make_user, login_as, password):
    uid = make_user("tfa@example.com")
    actor = login_as(user_id=uid)
    setup = actor.client.post("/api/auth/2fa/setup").get_json()["data"]
    assert setup["otpauthUrl"].startswith("otpauth://totp/")
    assert len(setup["backupCodes"]) == 10

    wrong = actor.client.post("/api/auth/2fa/verify", json={"code": "00000"})
    assert wrong.status_code == 400
    ok = actor.client.post("/api/auth/2fa/verify", json={"code": totp.totp(setup["secret"])})
    assert ok.get_json() == {"enabled": True}
    assert actor.client.post("/api/auth/2fa/setup").status_code == 409

    creds = {"email": "tfa@example.com", "password": password}
    missing = client.post("/api/auth/login", json=creds)
    assert missing.status_code == 401
    assert missing.get_json()["code"] == "two_factor_required"
    with_code = client.post("/api/auth/login", json={**creds, "code": totp.totp(setup["secret"])})
    assert with_code.status_code == 200

    backup = setup["backupCodes"][0]
    assert client.post("/api/auth/login", json={**creds, "code": backup}).status_code == 200
    # Backup codes are single use
    assert client.post("/api/auth/login", json={**creds, "code": backup}).status_code == 401


def test_two_factor_disable_requires_password(login_as, make_user, password):
    uid = make_user()
    actor = login_as(user_id=uid)
    secret = actor.client.post("/api/auth/2fa/setup").get_json()["data"]["secret"]
    actor.client.post("/api/auth/2fa/verify", json={"code": totp.totp(secret)})
    bad = actor.client.post("/api/auth/2fa/disable", json={"password": "wrong", "code": totp.totp(secret)})
    assert bad.status_code == 400
    ok = actor.client.post("/api/auth/2fa/disable", json={"password": password, "code": totp.totp(secret)})
    assert ok.get_json() == {"enabled": False}
    assert actor.client.get("/api/auth/me").get_json()["data"]["twoFactorEnabled"] is False


def test_bootstrap_admin_created_on_empty_db(tmp_path, monkeypatch):
    from rankup import cache, rate_limiter
    from rankup.app_factory import create_app
    from rankup.db import get_new_session
    from rankup.models import User

    cache._test_reset()
    rate_limiter._test_reset()
    app = create_app(
        {
            "TESTING": True,
            "database_url": f"sqlite:///{tmp_path / 'boot.db'}",
            "bootstrap_admin_email": "root@example.com",
            "bootstrap_admin_password": "RootPassw0rd",
        }
    )
    s = get_new_session()
    try:
        user = s.query(User).filter(User.email == "root@example.com").one()
        assert user.role == "super_admin"
    finally:
        s.close()
    login = app.test_client().post("/api/auth/login", json={"email": "root@example.com", "password": "RootPassw0rd"})
    assert login.status_code == 200
