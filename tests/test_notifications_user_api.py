import csv
import io


def test_comment_and_like_notify_post_author(member, other_member, make_post):
    post = make_post()
    other_member.client.post("/api/comments", json={"postId": post["id"], "content": "nice"})
    other_member.client.post("/api/likes", json={"postId": post["id"]})
    body = member.client.get("/api/notifications").get_json()
    assert {n["type"] for n in body["data"]} == {"comment", "like"}
    assert body["unreadCount"] == 2
    assert body["total"] == 2


def test_own_activity_does_not_notify(member, make_post):
    post = make_post()
    member.client.post("/api/comments", json={"postId": post["id"], "content": "self"})
    member.client.post("/api/likes", json={"postId": post["id"]})
    assert member.client.get("/api/notifications").get_json()["total"] == 0


def test_reply_notifies_parent_author(member, other_member, make_post):
    post = make_post()
    root = member.client.post("/api/comments", json={"postId": post["id"], "content": "root"}).get_json()["data"]
    other_member.client.post("/api/comments", json={"postId": post["id"], "content": "re", "parentId": root["id"]})
    types = [n["type"] for n in member.client.get("/api/notifications").get_json()["data"]]
    assert types == ["reply"]


def test_mark_read_and_delete(member, other_member, make_post):
    post = make_post()
    other_member.client.post("/api/comments", json={"postId": post["id"], "content": "a"})
    other_member.client.post("/api/likes", json={"postId": post["id"]})
    items = member.client.get("/api/notifications").get_json()["data"]

    one = member.client.patch("/api/notifications", json={"notificationId": items[0]["id"]})
    assert one.get_json()["updated"] == 1
    unread = member.client.get("/api/notifications?unreadOnly=true").get_json()
    assert len(unread["data"]) == 1 and unread["unreadCount"] == 1

    everything = member.client.patch("/api/notifications", json={"markAllAsRead": True})
    assert everything.get_json()["updated"] == 1
    assert member.client.patch("/api/notifications", json={}).status_code == 400

    # Another user cannot touch these
    assert other_member.client.delete(f"/api/notifications?id={items[0]['id']}").status_code == 404
    assert member.client.delete(f"/api/notifications?id={items[0]['id']}").status_code == 200
    assert member.client.get("/api/notifications").get_json()["total"] == 1


def test_profile_get_and_update(member, other_member):
    profile = member.client.get("/api/user/profile").get_json()["data"]
    assert profile["id"] == member.user_id
    resp = member.client.patch("/api/user/profile", json={"name": "Renamed", "bio": "Value investor"})
    assert resp.status_code == 200
    # Cached profile is invalidated by the update
    again = member.client.get("/api/user/profile").get_json()["data"]
    assert again["name"] == "Renamed" and again["bio"] == "Value investor"

    taken = other_member.client.get("/api/user/profile").get_json()["data"]["email"]
    clash = member.client.patch("/api/user/profile", json={"email": taken})
    assert clash.status_code == 409
    assert member.client.patch("/api/user/profile", json={"name": "x"}).status_code == 400
    assert member.client.patch("/api/user/profile", json={"image": "not a url"}).status_code == 400


def test_email_change_resets_verification(member, db):
    from rankup.models import User

    db.query(User).filter(User.id == member.user_id).update({User.email_verified: True})
    db.commit()
    data = member.client.patch("/api/user/profile", json={"email": "fresh@example.com"}).get_json()["data"]
    assert data["email"] == "fresh@example.com"
    assert data["emailVerified"] is False


def test_change_password_revokes_other_sessions(login_as, make_user, password):
    uid = make_user()
    current = login_as(user_id=uid)
    elsewhere = login_as(user_id=uid)
    wrong = current.client.post(
        "/api/user/profile/change-password",
        json={"currentPassword": "nope", "newPassword": "BrandNew1", "confirmPassword": "BrandNew1"},
    )
    assert wrong.status_code == 400
    assert wrong.get_json()["errors"][0]["field"] == "currentPassword"
    weak = current.client.post(
        "/api/user/profile/change-password",
        json={"currentPassword": password, "newPassword": "alllowercase", "confirmPassword": "alllowercase"},
    )
    assert weak.status_code == 400
    ok = current.client.post(
        "/api/user/profile/change-password",
        json={"currentPassword": password, "newPassword": "BrandNew1", "confirmPassword": "BrandNew1"},
    )
    assert ok.status_code == 200
    assert current.client.get("/api/auth/me").status_code == 200
    assert elsewhere.client.get("/api/auth/me").status_code == 401


def test_export_json_and_csv(member, make_post, stocks):
    post = make_post(title="Exported, with comma")
    member.client.post("/api/comments", json={"postId": post["id"], "content": "note"})
    member.client.post("/api/bookmarks", json={"stockId": stocks["005930"]})

    resp = member.client.get("/api/user/export")
    assert resp.status_code == 200
    assert "attachment" in resp.headers["Content-Disposition"]
    data = resp.get_json()
    assert data["user"]["id"] == member.user_id
    assert [p["title"] for p in data["posts"]] == ["Exported, with comma"]
    assert data["bookmarks"][0]["symbol"] == "005930"
    assert data["exportedAt"]

    csv_resp = member.client.get("/api/user/export?format=csv")
    assert csv_resp.mimetype == "text/csv"
    rows = list(csv.reader(io.StringIO(csv_resp.get_data(as_text=True))))
    assert rows[0] == ["type", "id", "postId", "title", "content", "createdAt"]
    assert rows[1][0] == "post" and rows[1][3] == "Exported, with comma"
    assert rows[2][0] == "comment"


def test_delete_account_requires_confirmation(member):
    resp = member.client.delete("/api/user/delete", json={"confirmation": "yes"})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["field"] == "confirmation"


def test_delete_account_purges_owned_content(client, member, other_member, make_post):
    mine = make_post()
    theirs = make_post(actor=other_member, title="Theirs")
    member.client.post("/api/comments", json={"postId": theirs["id"], "content": "bye"})
    member.client.post("/api/likes", json={"postId": theirs["id"]})
    other_member.client.post("/api/comments", json={"postId": mine["id"], "content": "on yours"})

    resp = member.client.delete("/api/user/delete", json={"confirmation": "DELETE_MY_ACCOUNT"})
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True
    assert member.client.get("/api/auth/me").status_code == 401
    assert client.get(f"/api/posts/{mine['id']}").status_code == 404
    assert client.get(f"/api/comments?postId={theirs['id']}").get_json()["total"] == 0
    assert client.get(f"/api/likes?postId={theirs['id']}").get_json()["count"] == 0
    assert client.get(f"/api/posts/{theirs['id']}").status_code == 200
