"""
rate_limit.py — Per-IP burst limiter.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
This guards the invoke endpoint against request floods from a single
address; the daily guest allowance is a separate concern handled by
gateway.core.guest_quota.

Both limiters identify the caller through client_ip(), so a spoofed
X-Forwarded-For header is either ignored by both or honoured by both
(TRUST_PROXY_HEADERS).

Usage in routes:
    @router.post("/invoke")
    @limiter.limit(INVOKE_RATE)
    async def invoke(request: Request, payload: InvokeRequest):
        ...

Wired into the app in main.py (app.state.limiter + RateLimitExceeded handler).
"""

from typing import Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from gateway.core.config import settings

INVOKE_RATE = "60/minute"


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop when proxy headers are trusted, else the socket peer."""
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else None


def limiter_key(request: Request) -> str:
    return client_ip(request) or get_remote_address(request)


limiter = Limiter(key_func=limiter_key)
