def test_anonymous_gets_popular_posts(client, member, other_member, make_post):
    quiet = make_post(title="Quiet")
    loved = make_post(title="Loved")
    other_member.client.post("/api/likes", json={"postId": loved["id"]})
    body = client.get("/api/recommendations").get_json()
    assert body["personalized"] is False
    assert [p["id"] for p in body["data"]] == [loved["id"], quiet["id"]]


def test_personalized_excludes_own_and_liked(member, other_member, make_post):
    mine = make_post(title="Mine")
    liked = make_post(actor=other_member, title="Liked", category="stock")
    fresh = make_post(actor=other_member, title="Fresh", category="free")
    member.client.post("/api/likes", json={"postId": liked["id"]})
    body = member.client.get("/api/recommendations").get_json()
    assert body["personalized"] is True
    ids = [p["id"] for p in body["data"]]
    assert ids == [fresh["id"]]
    assert mine["id"] not in ids and liked["id"] not in ids
    assert "score" in body["data"][0]


def test_category_affinity_ranks_first(login_as, member, make_post):
    author = login_as("user")
    liked = make_post(actor=author, title="Liked stock talk", category="stock")
    member.client.post("/api/likes", json={"postId": liked["id"]})
    stock_post = make_post(actor=author, title="More stock talk", category="stock")
    make_post(actor=author, title="Off topic", category="free")
    data = member.client.get("/api/recommendations").get_json()["data"]
    assert data[0]["id"] == stock_post["id"]
    assert data[0]["score"] > data[1]["score"]


def test_bookmarked_stock_boosts_score(member, login_as, make_post, stocks):
    author = login_as("user")
    member.client.post("/api/bookmarks", json={"stockId": stocks["000660"]})
    make_post(actor=author, title="Unrelated", category="free")
    hynix = make_post(actor=author, title="Hynix", category="free", stockId=stocks["000660"])
    data = member.client.get("/api/recommendations?limit=1").get_json()["data"]
    assert [p["id"] for p in data] == [hynix["id"]]
