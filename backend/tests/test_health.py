def test_health_endpoints(client):
    for path in ("/health", "/healthz"):
        r = client.get(path)
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "ok"
        assert body["environment"] == "test"
        assert body["uptime_seconds"] >= 0


def test_root_advertises_openapi_in_test(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["docs"] == "/api/openapi.json"


def test_request_id_is_propagated(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"
