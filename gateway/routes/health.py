"""
Health check endpoint.

Used by load balancers, container health checks and the web client to
check gateway connectivity.

Returns status + DB connectivity so callers can distinguish between
"gateway down" and "gateway up but DB unreachable".
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from gateway.core import database as db_module
from gateway.core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()

API_VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the process is alive
    version: str
    database: str  # "connected" | "disconnected" | "disabled"
    environment: str
    timestamp: datetime


@router.get("", response_model=HealthResponse, summary="Gateway health check")
async def health_check() -> HealthResponse:
    """
    Liveness status of the gateway and its database connection.

    HTTP 200 even when the database is disconnected; persistence is
    optional for serving invoke requests.
    """
    if not settings.persistence_enabled:
        db_status = "disabled"
    else:
        db_status = "disconnected"
        try:
            # Access via module reference so tests can patch db_module.db_client
            if db_module.db_client.client is not None:
                await db_module.db_client.client.admin.command("ping")
                db_status = "connected"
        except Exception as exc:
            logger.warning("DB ping failed: %s", exc)

    return HealthResponse(
        status="ok",
        version=API_VERSION,
        database=db_status,
        environment=settings.environment,
        timestamp=datetime.now(tz=timezone.utc),
    )
