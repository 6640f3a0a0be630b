def test_create_post_requires_login(client):
    resp = client.post("/api/posts", json={"title": "t", "content": "c", "category": "free"})
    assert resp.status_code == 401


def test_create_post_validation(member):
    resp = member.client.post("/api/posts", json={"title": "", "content": "c", "category": "free"})
    assert resp.status_code == 400
    resp = member.client.post("/api/posts", json={"title": "t", "content": "c", "category": "gossip"})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["field"] == "category"


def test_create_post_unknown_stock_400(member):
    resp = member.client.post("/api/posts", json={"title": "t", "content": "c", "category": "stock", "stockId": 999})
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["field"] == "stockId"


def test_create_and_view_post(client, member, make_post, stocks):
    post = make_post(title="Samsung thoughts", category="stock", stockId=stocks["005930"], tags=["chips"])
    assert post["authorId"] == member.user_id
    assert post["views"] == 0
    assert post["_count"] == {"comments": 0, "likes": 0}
    first = client.get(f"/api/posts/{post['id']}").get_json()["data"]
    second = client.get(f"/api/posts/{post['id']}").get_json()["data"]
    assert second["views"] == first["views"] + 1 == 2
    assert second["tags"] == ["chips"]
    assert client.get("/api/posts/9999").status_code == 404


def test_list_posts_filter_search_and_sort(client, member, other_member, make_post):
    a = make_post(title="Alpha", category="free")
    b = make_post(title="Beta talk", category="stock")
    make_post(actor=other_member, title="Gamma", category="free")
    free = client.get("/api/posts?category=free").get_json()
    assert {p["title"] for p in free["data"]} == {"Alpha", "Gamma"}
    assert free["pagination"]["limit"] == 10
    assert client.get("/api/posts?category=all").get_json()["pagination"]["total"] == 3
    found = client.get("/api/posts?search=beta").get_json()["data"]
    assert [p["id"] for p in found] == [b["id"]]

    other_member.client.post("/api/likes", json={"postId": a["id"]})
    by_likes = client.get("/api/posts?sortBy=likes").get_json()["data"]
    assert by_likes[0]["id"] == a["id"]
    assert by_likes[0]["_count"]["likes"] == 1
    assert client.get("/api/posts?sortBy=bogus").status_code == 400


def test_update_post_owner_only(member, other_member, admin, make_post):
    post = make_post()
    denied = other_member.client.patch(f"/api/posts/{post['id']}", json={"title": "Hijack"})
    assert denied.status_code == 403
    ok = member.client.patch(f"/api/posts/{post['id']}", json={"title": "Edited"})
    assert ok.status_code == 200
    assert ok.get_json()["data"]["title"] == "Edited"
    by_admin = admin.client.patch(f"/api/posts/{post['id']}", json={"category": "notice"})
    assert by_admin.get_json()["data"]["category"] == "notice"


def test_delete_post_cascades(client, member, other_member, make_post):
    post = make_post()
    c1 = other_member.client.post("/api/comments", json={"postId": post["id"], "content": "first"}).get_json()["data"]
    member.client.post("/api/comments", json={"postId": post["id"], "content": "reply", "parentId": c1["id"]})
    other_member.client.post("/api/likes", json={"postId": post["id"]})
    other_member.client.post("/api/reports", json={"type": "post", "targetId": post["id"], "reason": "spam"})

    assert other_member.client.delete(f"/api/posts/{post['id']}").status_code == 403
    resp = member.client.delete(f"/api/posts/{post['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["deletedComments"] == 2
    assert client.get(f"/api/posts/{post['id']}").status_code == 404
    assert client.get(f"/api/likes?postId={post['id']}").get_json()["count"] == 0
    assert other_member.client.get("/api/reports").get_json()["data"] == []


def test_comment_tree_and_reply_validation(client, member, other_member, make_post):
    post = make_post()
    other_post = make_post(title="Other")
    root = other_member.client.post("/api/comments", json={"postId": post["id"], "content": "root"}).get_json()["data"]
    reply = member.client.post(
        "/api/comments", json={"postId": post["id"], "content": "reply", "parentId": root["id"]}
    )
    assert reply.status_code == 201
    wrong_post = member.client.post(
        "/api/comments", json={"postId": other_post["id"], "content": "x", "parentId": root["id"]}
    )
    assert wrong_post.status_code == 400
    assert wrong_post.get_json()["errors"][0]["field"] == "parentId"

    tree = client.get(f"/api/comments?postId={post['id']}").get_json()
    assert tree["total"] == 2
    assert len(tree["data"]) == 1
    assert tree["data"][0]["replies"][0]["content"] == "reply"
    assert tree["data"][0]["author"]["id"] == other_member.user_id
    assert client.get("/api/comments").status_code == 400


def test_comment_too_long_400(member, make_post):
    post = make_post()
    resp = member.client.post("/api/comments", json={"postId": post["id"], "content": "x" * 501})
    assert resp.status_code == 400


def test_delete_comment_removes_subtree(client, member, other_member, make_post):
    post = make_post()
    root = member.client.post("/api/comments", json={"postId": post["id"], "content": "root"}).get_json()["data"]
    child = other_member.client.post(
        "/api/comments", json={"postId": post["id"], "content": "child", "parentId": root["id"]}
    ).get_json()["data"]
    member.client.post("/api/comments", json={"postId": post["id"], "content": "grandchild", "parentId": child["id"]})
    resp = member.client.delete(f"/api/comments/{root['id']}")
    assert resp.get_json()["deleted"] == 3
    assert client.get(f"/api/comments?postId={post['id']}").get_json()["total"] == 0


def test_update_comment_owner_only(member, other_member, make_post):
    post = make_post()
    c = member.client.post("/api/comments", json={"postId": post["id"], "content": "mine"}).get_json()["data"]
    assert other_member.client.patch(f"/api/comments/{c['id']}", json={"content": "theirs"}).status_code == 403
    ok = member.client.patch(f"/api/comments/{c['id']}", json={"content": "edited"})
    assert ok.get_json()["data"]["content"] == "edited"


def test_like_unlike(client, member, other_member, make_post):
    post = make_post()
    assert other_member.client.post("/api/likes", json={"postId": post["id"]}).status_code == 201
    dup = other_member.client.post("/api/likes", json={"postId": post["id"]})
    assert dup.status_code == 409
    assert dup.get_json()["detail"] == "already_liked"
    assert client.get(f"/api/likes?postId={post['id']}").get_json()["count"] == 1
    mine = client.get(f"/api/likes?userId={other_member.user_id}").get_json()
    assert mine["data"][0]["postId"] == post["id"]
    assert other_member.client.delete(f"/api/likes?postId={post['id']}").status_code == 200
    assert other_member.client.delete(f"/api/likes?postId={post['id']}").status_code == 404
    assert other_member.client.post("/api/likes", json={"postId": 9999}).status_code == 404


def test_bookmarks(member, stocks):
    sid = stocks["000660"]
    assert member.client.post("/api/bookmarks", json={"stockId": sid}).status_code == 201
    assert member.client.post("/api/bookmarks", json={"stockId": sid}).status_code == 409
    assert member.client.post("/api/bookmarks", json={"stockId": 9999}).status_code == 404
    listing = member.client.get("/api/bookmarks").get_json()["data"]
    assert listing[0]["stock"]["symbol"] == "000660"
    assert member.client.delete(f"/api/bookmarks?stockId={sid}").status_code == 200
    assert member.client.delete(f"/api/bookmarks?stockId={sid}").status_code == 404


def test_bookmarks_require_login(client):
    assert client.get("/api/bookmarks").status_code == 401


def test_reports(member, other_member, make_post):
    post = make_post()
    body = {"type": "post", "targetId": post["id"], "reason": "spam", "description": "ads"}
    resp = other_member.client.post("/api/reports", json=body)
    assert resp.status_code == 201
    report = resp.get_json()["data"]
    assert report["status"] == "pending"
    assert other_member.client.post("/api/reports", json=body).status_code == 409
    assert other_member.client.post("/api/reports", json={**body, "targetId": 9999}).status_code == 404
    assert other_member.client.post("/api/reports", json={**body, "reason": "boring"}).status_code == 400
    own = other_member.client.get("/api/reports").get_json()["data"]
    assert [r["id"] for r in own] == [report["id"]]
    assert member.client.get("/api/reports").get_json()["data"] == []
