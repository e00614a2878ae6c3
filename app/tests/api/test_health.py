def test_health_echoes_request_id(client):
    r = client.get("/api/v1/health", headers={"X-Request-Id": "req-123"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "Real Estate Marketplace Identity Service", "request_id": "req-123"}
    assert r.headers["X-Request-Id"] == "req-123"
