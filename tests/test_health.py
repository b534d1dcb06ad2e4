async def test_health(service_client):
    resp = await service_client.get("/health")
    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "ok"
    assert "X-Trace-Id" in resp.headers
