def test_docs_lists_registered_routes(client):
    resp = client.get("/api/docs")
    assert resp.status_code == 200
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    spec = resp.get_json()
    assert spec["openapi"].startswith("3.")
    assert spec["info"]["title"] == "RANKUP API"
    paths = spec["paths"]
    assert {"get", "post"} <= set(paths["/api/posts"])
    assert {"get", "patch", "delete"} <= set(paths["/api/posts/{post_id}"])
    assert "/api/stocks/{symbol}" in paths
    assert "/api/admin/users" in paths


def test_docs_path_parameters_and_errors(client):
    spec = client.get("/api/docs").get_json()
    op = spec["paths"]["/api/posts/{post_id}"]["get"]
    assert op["parameters"] == [{"name": "post_id", "in": "path", "required": True, "schema": {"type": "integer"}}]
    assert op["tags"] == ["posts"]
    assert op["responses"]["404"] == {"$ref": "#/components/responses/Problem404"}
    symbol = spec["paths"]["/api/stocks/{symbol}"]["get"]["parameters"][0]
    assert symbol["schema"] == {"type": "string"}
    assert "ProblemDetails" in spec["components"]["schemas"]
    assert "BearerAuth" in spec["components"]["securitySchemes"]
