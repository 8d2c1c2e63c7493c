"""
event.py — Audit / analytics event documents.

SystemEvent     — account lifecycle and security events
ApiRequestEvent — one row per /v1/invoke call
AnalyticsOut    — aggregated counters returned by GET /v1/analytics
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

Severity = Literal["info", "warn", "error"]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SystemEvent(BaseModel):
    event_type: str
    severity: Severity = "info"
    message: str
    user_id: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ApiRequestEvent(BaseModel):
    request_id: str
    user_id: Optional[str] = None
    operation: str
    tier: str
    provider: str
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    response_status: int
    response_time_ms: int
    input_messages: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    error_message: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class AnalyticsOut(BaseModel):
    requests: int = 0
    tokens: int = 0
    errors: int = 0
    hours: Optional[int] = None
