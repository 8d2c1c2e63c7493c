"""
MongoDB connection management using Motor (async driver).

Single DatabaseClient instance shared across all requests via a
module-level singleton. Routes get the database through the get_db()
dependency, which tests override with an in-memory fake.

Persistence is best-effort: when MongoDB is unreachable (or
PERSISTENCE_ENABLED=false) the gateway keeps serving, account routes
answer 503 and events are only written to the log.
"""

import logging
import re

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from gateway.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseClient:
    """Holds the Motor client and selected database (patched in tests)."""

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None


# Module-level singleton — all app code references this object
db_client = DatabaseClient()


async def connect_to_mongo() -> None:
    """
    Create the MongoDB connection and validate it with a ping.

    Called once at app startup (via lifespan). Never raises: on failure the
    client is left unset and the API runs in degraded mode.
    """
    if not settings.persistence_enabled:
        logger.info("Persistence disabled — events will only be logged")
        return

    logger.info("Connecting to MongoDB at %s", _redact_uri(settings.mongo_uri))
    options = {"serverSelectionTimeoutMS": 5000}
    if _uses_tls(settings.mongo_uri):
        # certifi's CA bundle so Atlas TLS works without system cert setup
        options["tlsCAFile"] = certifi.where()
    try:
        db_client.client = AsyncIOMotorClient(settings.mongo_uri, **options)
        db_client.db = db_client.client[settings.mongo_db_name]
        await db_client.client.admin.command("ping")
        logger.info("MongoDB connection established (db: %s)", settings.mongo_db_name)
    except Exception as exc:
        logger.warning(
            "MongoDB unavailable at startup: %s. "
            "API running in degraded mode — account and analytics endpoints will fail.",
            exc,
        )
        db_client.client = None
        db_client.db = None


async def close_mongo_connection() -> None:
    """Close the MongoDB connection gracefully on app shutdown."""
    if db_client.client is not None:
        db_client.client.close()
        logger.info("MongoDB connection closed")


def get_db() -> AsyncIOMotorDatabase | None:
    """
    FastAPI dependency — inject the database into route handlers.

    Returns None when MongoDB is unavailable so routes can degrade
    gracefully (skip persistence) rather than returning 500 errors.
    """
    return db_client.db


def _uses_tls(uri: str) -> bool:
    # Atlas SRV URIs imply TLS; plain URIs opt in with tls=true / ssl=true
    return uri.startswith("mongodb+srv://") or bool(re.search(r"[?&](tls|ssl)=true", uri))


def _redact_uri(uri: str) -> str:
    """Strip credentials from URI before logging."""
    return re.sub(r"://[^:]+:[^@]+@", "://<redacted>@", uri)
