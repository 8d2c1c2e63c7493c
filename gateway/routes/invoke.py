"""
invoke.py — POST /v1/invoke, the gateway's main entry point.

Pipeline per request:
  1. Identify the caller (Bearer header or body `token`)
  2. Resolve op + tier to a provider/model and validate the input
  3. Guests: consume one slot of the daily guest allowance (429 when spent)
  4. Enrich the conversation: system prompt, web search, attachments
  5. Record an api_request event and return the prepared request

Forwarding the prepared request to the upstream provider is not wired up
yet; the response describes exactly what would be sent.
"""

import logging
import time
import uuid
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from gateway.ai.search_adapter import SearchService, format_search_context, search_service
from gateway.core.config import settings
from gateway.core.database import get_db
from gateway.core.guest_quota import GuestQuotaLimiter
from gateway.core.rate_limit import INVOKE_RATE, client_ip, limiter
from gateway.core.routing import RouteTarget, RoutingTable, normalize_provider
from gateway.core.security import TokenClaims, decode_access_token
from gateway.models.event import ApiRequestEvent
from gateway.models.invoke import (
    ChatMessage,
    GuestQuotaOut,
    InvokeRequest,
    InvokeResponse,
    SearchSummary,
)
from gateway.routes.auth import OptionalClaims
from gateway.services.event_store import log_api_request
from gateway.services.file_processor import (
    create_messages_with_file_context,
    process_file_attachments,
    supports_multimodal,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1", tags=["invoke"])

FINGERPRINT_HEADER = "X-Client-Fingerprint"


# ── Dependencies ──────────────────────────────────────────────────────────────
# Built in main.py and stored on app.state; tests swap them per test.

def get_routing_table(request: Request) -> RoutingTable:
    return request.app.state.routing_table


def get_guest_limiter(request: Request) -> GuestQuotaLimiter:
    return request.app.state.guest_limiter


def get_search_service() -> SearchService:
    return search_service


RoutingDep = Annotated[RoutingTable, Depends(get_routing_table)]
GuestLimiterDep = Annotated[GuestQuotaLimiter, Depends(get_guest_limiter)]
SearchDep = Annotated[SearchService, Depends(get_search_service)]


# ── Helpers ───────────────────────────────────────────────────────────────────

def _select_target(payload: InvokeRequest, table: RoutingTable, tier: str) -> RouteTarget:
    provider = payload.input.get("provider")
    model = payload.input.get("model")
    if isinstance(provider, str) and isinstance(model, str) and provider.strip() and model.strip():
        return RouteTarget(normalize_provider(provider), model.strip())

    target = table.resolve(payload.op, tier)
    if target is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"No route configured for {payload.op}.{tier}",
        )
    return target


def _input_messages(payload: InvokeRequest) -> list[ChatMessage]:
    """Conversation turns from the operation-specific `input` object."""
    if payload.op == "fim":
        prompt = payload.input.get("prompt")
        if not isinstance(prompt, str) or not prompt:
            raise HTTPException(
                status_code=422,
                detail="fim requests need a non-empty input.prompt",
            )
        return [ChatMessage(role="user", content=prompt)]

    raw: Any = payload.input.get("messages")
    if not isinstance(raw, list) or not raw:
        raise HTTPException(
            status_code=422,
            detail="chat requests need a non-empty input.messages list",
        )
    try:
        return [ChatMessage.model_validate(m) for m in raw]
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False),
        )


def _last_user_text(messages: list[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""


# ── Route ─────────────────────────────────────────────────────────────────────

@router.post("/invoke", response_model=InvokeResponse)
@limiter.limit(INVOKE_RATE)
async def invoke(
    request: Request,
    payload: InvokeRequest,
    header_claims: OptionalClaims,
    routing_table: RoutingDep,
    guest_limiter: GuestLimiterDep,
    searcher: SearchDep,
    db=Depends(get_db),
):
    """Authorise, route and enrich one chat / fim request."""
    started = time.perf_counter()
    request_id = str(uuid.uuid4())
    ip_address = client_ip(request)

    # 1. Identity
    claims: Optional[TokenClaims] = header_claims
    if claims is None and payload.token:
        claims = decode_access_token(payload.token)
    if claims is None and settings.auth_required:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 2. Route and validate; only forwardable requests are charged below
    tier = payload.tier or settings.default_tier
    target = _select_target(payload, routing_table, tier)
    provider = target.provider.value
    messages = _input_messages(payload)

    # 3. Guest allowance
    quota_out: Optional[GuestQuotaOut] = None
    if claims is None or claims.is_guest:
        decision = guest_limiter.check(
            fingerprint=request.headers.get(FINGERPRINT_HEADER),
            ip_address=ip_address,
            user_id=claims.user_id if claims else None,
        )
        quota_out = GuestQuotaOut(
            remaining=decision.remaining,
            reset_at=decision.reset_at,
            reason=decision.reason,
        )
        if not decision.admitted:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "message": "Guest daily message limit reached. Sign up to continue.",
                    **quota_out.model_dump(),
                },
            )

    # 4. Enrich
    system_parts: list[str] = []
    if payload.op == "chat" or settings.inject_fim_system_prompt:
        system_parts.append(settings.system_prompt)

    search_summary: Optional[SearchSummary] = None
    want_search = payload.enable_search if payload.enable_search is not None else True
    if payload.op == "chat" and want_search:
        query = _last_user_text(messages)
        if query and searcher.needs_internet_search(query):
            found = await searcher.perform_web_search(query)
            search_summary = SearchSummary(
                query=found.query,
                provider=found.provider,
                result_count=len(found.results),
            )
            context = format_search_context(found)
            if context:
                system_parts.append(context)

    attachments_processed = 0
    multimodal = False
    if payload.attachments:
        processed = await process_file_attachments(payload.attachments)
        attachments_processed = len(processed.processed_attachments)
        multimodal = processed.image_count > 0 and supports_multimodal(provider, target.model)
        messages = create_messages_with_file_context(messages, processed.context_prompt)

    if system_parts:
        messages = [ChatMessage(role="system", content="\n\n".join(system_parts)), *messages]

    # 5. Record
    options = payload.options
    await log_api_request(
        db,
        ApiRequestEvent(
            request_id=request_id,
            user_id=claims.user_id if claims else None,
            operation=payload.op,
            tier=tier,
            provider=provider,
            model=target.model,
            temperature=options.temperature if options else None,
            max_tokens=options.max_tokens if options else None,
            response_status=status.HTTP_200_OK,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            input_messages=len(messages),
            user_agent=request.headers.get("user-agent"),
            ip_address=ip_address,
        ),
    )

    return InvokeResponse(
        request_id=request_id,
        op=payload.op,
        tier=tier,
        provider=provider,
        model=target.model,
        provider_configured=settings.provider_is_configured(provider),
        messages=messages,
        search=search_summary,
        attachments_processed=attachments_processed,
        multimodal=multimodal,
        guest_quota=quota_out,
        message="Request prepared; upstream forwarding is not enabled",
    )
