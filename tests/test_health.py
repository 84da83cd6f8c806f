import pytest


@pytest.mark.asyncio
async def test_health_is_public_and_reports_dependencies(client):
    r = await client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["dependencies"] == {"redis": "ok", "database": "ok"}
    assert body["live_connections"] == 0
