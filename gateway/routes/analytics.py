"""
analytics.py — Aggregated usage counters.

GET /v1/analytics?hours=24 → {requests, tokens, errors, hours}
Omitting `hours` aggregates everything stored.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from gateway.core.database import get_db
from gateway.models.event import AnalyticsOut
from gateway.services.event_store import get_analytics

router = APIRouter(prefix="/v1", tags=["analytics"])


@router.get("/analytics", response_model=AnalyticsOut)
async def analytics(
    hours: Optional[int] = Query(default=None, ge=1, le=24 * 366),
    db=Depends(get_db),
):
    return await get_analytics(db, hours=hours)
