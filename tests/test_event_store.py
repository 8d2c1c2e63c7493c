"""
test_event_store.py — Audit events and analytics aggregation.
"""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from gateway.models.event import ApiRequestEvent
from gateway.services.event_store import get_analytics, log_api_request, log_system_event


def _request_event(**overrides) -> ApiRequestEvent:
    fields = dict(
        request_id="req-1",
        operation="chat",
        tier="fast",
        provider="openai",
        model="gpt-4o-mini",
        response_status=200,
        response_time_ms=12,
    )
    fields.update(overrides)
    return ApiRequestEvent(**fields)


class TestSystemEvents:
    async def test_persisted_when_db_available(self, fake_db):
        event = await log_system_event(fake_db, "user_login", "info", "hello", user_id="u1")
        [doc] = fake_db["system_events"].docs
        assert doc["event_type"] == "user_login"
        assert doc["user_id"] == "u1"
        assert event.severity == "info"

    async def test_logged_without_db(self, caplog):
        with caplog.at_level(logging.WARNING, logger="gateway.services.event_store"):
            await log_system_event(None, "login_failed", "warn", "bad password")
        assert any("login_failed" in r.getMessage() for r in caplog.records)

    async def test_storage_failure_is_swallowed(self):
        db = MagicMock()
        db.__getitem__.return_value.insert_one = AsyncMock(side_effect=RuntimeError("write failed"))
        event = await log_system_event(db, "user_login", "info", "hello")
        assert event.event_type == "user_login"


class TestApiRequests:
    async def test_persisted(self, fake_db):
        await log_api_request(fake_db, _request_event())
        assert fake_db["api_requests"].docs[0]["request_id"] == "req-1"

    async def test_no_db_is_a_noop(self):
        await log_api_request(None, _request_event())


class TestAnalytics:
    async def test_zeros_without_db(self):
        result = await get_analytics(None, hours=24)
        assert (result.requests, result.tokens, result.errors, result.hours) == (0, 0, 0, 24)

    async def test_zeros_with_empty_collection(self, fake_db):
        result = await get_analytics(fake_db)
        assert (result.requests, result.tokens, result.errors) == (0, 0, 0)

    async def test_aggregates_requests_tokens_errors(self, fake_db):
        await log_api_request(fake_db, _request_event(input_tokens=10, output_tokens=5))
        await log_api_request(fake_db, _request_event(request_id="req-2", input_tokens=3))
        await log_api_request(fake_db, _request_event(request_id="req-3", response_status=502))

        result = await get_analytics(fake_db)
        assert (result.requests, result.tokens, result.errors) == (3, 18, 1)

    async def test_hours_window(self, fake_db):
        old = datetime.now(tz=timezone.utc) - timedelta(hours=30)
        await log_api_request(fake_db, _request_event(created_at=old))
        await log_api_request(fake_db, _request_event(request_id="req-2"))

        assert (await get_analytics(fake_db, hours=24)).requests == 1
        assert (await get_analytics(fake_db)).requests == 2

    async def test_user_filter(self, fake_db):
        await log_api_request(fake_db, _request_event(user_id="u1"))
        await log_api_request(fake_db, _request_event(request_id="req-2", user_id="u2"))
        assert (await get_analytics(fake_db, user_id="u1")).requests == 1


class TestAnalyticsRoute:
    async def test_route_without_db(self, client):
        r = await client.get("/v1/analytics", params={"hours": 24})
        assert r.status_code == 200
        assert r.json() == {"requests": 0, "tokens": 0, "errors": 0, "hours": 24}

    async def test_route_counts_invokes(self, db_client):
        await db_client.post(
            "/v1/invoke",
            json={"op": "chat", "input": {"messages": [{"role": "user", "content": "hi"}]}},
        )
        data = (await db_client.get("/v1/analytics")).json()
        assert data["requests"] == 1
        assert data["errors"] == 0

    async def test_invalid_hours_422(self, client):
        r = await client.get("/v1/analytics", params={"hours": 0})
        assert r.status_code == 422
