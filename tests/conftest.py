"""
pytest configuration and shared fixtures for the VoidXP Gateway tests.

Key concern: tests must not require a live MongoDB, provider keys or
network access. We achieve this by:
  1. Setting env vars before the app is imported: a test JWT secret,
     persistence off, web search off, a fixed routing table.
  2. Patching connect_to_mongo / close_mongo_connection to no-ops and
     leaving db_client disconnected (a valid degraded-mode state).
  3. Giving every test a fresh routing table, guest limiter and slowapi
     counter on app.state so state never leaks between tests.

Tests that need persistence use the `db_client` fixture, which overrides
the get_db dependency with the in-memory FakeDB below.
"""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ACTION_TOKEN_SECRET", "test-secret-not-for-production-0123456789")
os.environ.setdefault("PERSISTENCE_ENABLED", "false")
os.environ.setdefault("ENABLE_INTERNET_ACCESS", "false")
os.environ.setdefault("SEARXNG_ENABLED", "false")
os.environ.setdefault("AUTH_REQUIRED", "false")

TEST_ROUTES = (
    "chat.fast=openai:gpt-4o-mini,"
    "chat.smart=anthropic:claude-3-5-sonnet,"
    "fim.fast=mistral:codestral-latest"
)
os.environ.setdefault("ROUTES", TEST_ROUTES)


# ── In-memory MongoDB emulator ─────────────────────────────────────────────────

class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    """Minimal async-compatible replica of a Motor collection."""

    def __init__(self):
        self._docs: dict[str, dict] = {}

    @property
    def docs(self) -> list[dict]:
        return list(self._docs.values())

    async def find_one(self, query: dict):
        for doc in self._docs.values():
            if self._matches(doc, query):
                return doc
        return None

    async def insert_one(self, doc: dict):
        oid = ObjectId()
        doc = {**doc, "_id": oid}
        self._docs[str(oid)] = doc
        result = MagicMock()
        result.inserted_id = oid
        return result

    async def update_one(self, query: dict, update: dict):
        result = MagicMock()
        result.modified_count = 0
        for doc in self._docs.values():
            if self._matches(doc, query):
                if "$set" in update:
                    doc.update(update["$set"])
                result.modified_count = 1
                break
        return result

    def aggregate(self, pipeline: list[dict]):
        """Supports the $match (equality / $gte) + $group shape used by get_analytics."""
        match = next((stage["$match"] for stage in pipeline if "$match" in stage), {})
        rows = [d for d in self._docs.values() if self._matches(d, match)]
        if not rows:
            return FakeCursor([])
        return FakeCursor([{
            "_id": None,
            "requests": len(rows),
            "tokens": sum((d.get("input_tokens") or 0) + (d.get("output_tokens") or 0) for d in rows),
            "errors": sum(1 for d in rows if d.get("response_status", 0) >= 400),
        }])

    @staticmethod
    def _matches(doc: dict, query: dict) -> bool:
        for key, value in query.items():
            if isinstance(value, dict) and "$gte" in value:
                if key not in doc or doc[key] < value["$gte"]:
                    return False
            elif doc.get(key) != value:
                return False
        return True


class FakeDB:
    """Fake MongoDB database — lazily creates collections."""

    def __init__(self):
        self._cols: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._cols:
            self._cols[name] = FakeCollection()
        return self._cols[name]


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    - connect_to_mongo / close_mongo_connection → no-op AsyncMocks
    - db_client.client / db_client.db → None (degraded mode)
    """
    with (
        patch("gateway.core.database.connect_to_mongo", new_callable=AsyncMock),
        patch("gateway.core.database.close_mongo_connection", new_callable=AsyncMock),
    ):
        import gateway.core.database as db_module

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture(autouse=True)
def fresh_app_state():
    """Fresh routing table, guest limiter and burst counters for each test."""
    from gateway.core.guest_quota import GuestQuotaLimiter
    from gateway.core.rate_limit import limiter
    from gateway.core.routing import build_routing
    from gateway.main import app

    app.state.routing_table = build_routing(TEST_ROUTES)
    app.state.guest_limiter = GuestQuotaLimiter(max_per_day=5)
    limiter._limiter.storage.reset()

    yield app

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 — mock_db must run first
    """
    HTTPX async test client wired to the FastAPI app.

    Usage:
        async def test_something(client):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    from gateway.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def fake_db():
    """Fresh in-memory DB for each test."""
    return FakeDB()


@pytest.fixture()
async def db_client(fake_db):
    """
    HTTPX client with the get_db FastAPI dependency overridden to use
    the in-memory FakeDB instead of a real MongoDB connection.
    """
    from gateway.core.database import get_db
    from gateway.main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
