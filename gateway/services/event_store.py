"""
event_store.py — Best-effort audit and analytics persistence.

Every write goes to the log first and then, when a database is available,
to MongoDB. Storage errors are logged and swallowed: losing an audit row
must never fail the request that produced it.

Collections:
  system_events — account lifecycle / security events
  api_requests  — one document per /v1/invoke call
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from gateway.models.event import AnalyticsOut, ApiRequestEvent, Severity, SystemEvent

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


async def log_system_event(
    db,
    event_type: str,
    severity: Severity,
    message: str,
    user_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> SystemEvent:
    """Record a system event. Returns the event that was (or would be) stored."""
    event = SystemEvent(
        event_type=event_type,
        severity=severity,
        message=message,
        user_id=user_id,
        metadata=metadata,
    )
    logger.log(_LOG_LEVELS[severity], "System event %s: %s", event_type, message)

    if db is not None:
        try:
            await db["system_events"].insert_one(event.model_dump())
        except Exception as exc:
            logger.warning("Failed to persist system event %s: %s", event_type, exc)
    return event


async def log_api_request(db, event: ApiRequestEvent) -> None:
    """Record one invoke call for analytics."""
    logger.info(
        "API request %s: %s.%s → %s:%s status=%d in %dms",
        event.request_id,
        event.operation,
        event.tier,
        event.provider,
        event.model,
        event.response_status,
        event.response_time_ms,
    )
    if db is None:
        return
    try:
        await db["api_requests"].insert_one(event.model_dump())
    except Exception as exc:
        logger.warning("Failed to persist API request %s: %s", event.request_id, exc)


async def get_analytics(
    db,
    user_id: Optional[str] = None,
    hours: Optional[int] = None,
) -> AnalyticsOut:
    """
    Aggregate request, token and error counts from api_requests.

    Args:
        user_id: Restrict to one user (None = everyone).
        hours:   Look-back window; None = all stored data.

    Returns zeros when no database is connected.
    """
    if db is None:
        return AnalyticsOut(hours=hours)

    match: dict[str, Any] = {}
    if user_id:
        match["user_id"] = user_id
    if hours:
        match["created_at"] = {"$gte": datetime.now(tz=timezone.utc) - timedelta(hours=hours)}

    pipeline = [
        {"$match": match},
        {
            "$group": {
                "_id": None,
                "requests": {"$sum": 1},
                "tokens": {
                    "$sum": {
                        "$add": [
                            {"$ifNull": ["$input_tokens", 0]},
                            {"$ifNull": ["$output_tokens", 0]},
                        ]
                    }
                },
                "errors": {"$sum": {"$cond": [{"$gte": ["$response_status", 400]}, 1, 0]}},
            }
        },
    ]

    cursor = db["api_requests"].aggregate(pipeline)
    rows = await cursor.to_list(length=1)
    if not rows:
        return AnalyticsOut(hours=hours)

    row = rows[0]
    return AnalyticsOut(
        requests=row.get("requests", 0),
        tokens=row.get("tokens", 0),
        errors=row.get("errors", 0),
        hours=hours,
    )
