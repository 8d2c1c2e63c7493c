"""
Tests for the /health and / endpoints.

All tests run without a live MongoDB (db is mocked as disconnected in conftest).
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

from gateway.core.config import settings


async def test_health_returns_200(client):
    """Health endpoint must always return 200 if the process is alive."""
    response = await client.get("/health")
    assert response.status_code == 200


async def test_health_response_schema(client):
    data = (await client.get("/health")).json()

    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"
    assert data["environment"] == "test"
    assert datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))


async def test_health_reports_disabled_persistence(client):
    data = (await client.get("/health")).json()
    assert data["database"] == "disabled"


async def test_health_reports_disconnected(client, monkeypatch):
    monkeypatch.setattr(settings, "persistence_enabled", True)
    data = (await client.get("/health")).json()
    assert data["database"] == "disconnected"


async def test_health_reports_connected(client, monkeypatch):
    import gateway.core.database as db_module

    monkeypatch.setattr(settings, "persistence_enabled", True)
    fake_client = MagicMock()
    fake_client.admin.command = AsyncMock(return_value={"ok": 1})
    db_module.db_client.client = fake_client

    data = (await client.get("/health")).json()
    assert data["database"] == "connected"


async def test_health_ping_failure_is_not_an_error(client, monkeypatch):
    import gateway.core.database as db_module

    monkeypatch.setattr(settings, "persistence_enabled", True)
    fake_client = MagicMock()
    fake_client.admin.command = AsyncMock(side_effect=RuntimeError("boom"))
    db_module.db_client.client = fake_client

    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "disconnected"


async def test_root_returns_metadata(client):
    data = (await client.get("/")).json()
    assert data["name"] == "VoidXP Gateway"
    assert data["status"] == "running"
    assert data["routes"] == 3


async def test_oversized_body_413(client, monkeypatch):
    monkeypatch.setattr(settings, "json_limit", 64)
    response = await client.post(
        "/v1/invoke",
        json={"op": "chat", "input": {"messages": [{"role": "user", "content": "x" * 200}]}},
    )
    assert response.status_code == 413
    assert "exceeds" in response.json()["detail"]
