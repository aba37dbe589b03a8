"""App wiring smoke tests."""


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_openapi_lists_clerk_routes(client):
    schema = client.get("/openapi.json").json()

    assert schema["info"]["title"] == "Clerk"
    paths = schema["paths"]
    assert "post" in paths["/api/sync"]
    assert "get" in paths["/api/links"]
    assert "delete" in paths["/api/links/{item_id}"]
    assert "get" in paths["/api/ledger"]
