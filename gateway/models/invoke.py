"""
invoke.py — Pydantic schemas for POST /v1/invoke.

InvokeRequest   — what the client sends
InvokeResponse  — the prepared request summary returned to the client
ChatMessage     — one conversation turn
Attachment      — file reference (data: URL or http(s) URL)
GuestQuotaOut   — guest allowance reported alongside guest responses
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

Operation = Literal["chat", "fim"]
MessageRole = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    role: MessageRole
    content: str


class InvokeOptions(BaseModel):
    """Generation options forwarded to the upstream model."""
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)


class Attachment(BaseModel):
    name: str
    url: str  # data: URI or http(s) URL
    content_type: str
    size: Optional[int] = Field(default=None, ge=0)


class InvokeRequest(BaseModel):
    """
    Payload for POST /v1/invoke.

    `input` is operation specific:
      chat → {"messages": [{"role": "user", "content": "..."}]}
      fim  → {"prompt": "...", "suffix": "..."}
    Either may also carry "provider" + "model" to bypass the routing table.
    """
    op: Operation
    tier: Optional[str] = None
    input: dict[str, Any] = Field(default_factory=dict)
    options: Optional[InvokeOptions] = None
    token: Optional[str] = None
    enable_search: Optional[bool] = None
    attachments: Optional[list[Attachment]] = None


class SearchResult(BaseModel):
    title: str
    url: str
    snippet: str
    score: Optional[float] = None


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult] = Field(default_factory=list)
    provider: str = "none"  # tavily | brave | searxng | none
    took_ms: int = 0


class SearchSummary(BaseModel):
    query: str
    provider: str
    result_count: int


class GuestQuotaOut(BaseModel):
    remaining: int
    reset_at: int  # epoch ms
    reason: str


class InvokeResponse(BaseModel):
    request_id: str
    status: str = "processed"
    op: Operation
    tier: str
    provider: str
    model: str
    provider_configured: bool
    messages: list[ChatMessage]
    search: Optional[SearchSummary] = None
    attachments_processed: int = 0
    multimodal: bool = False
    guest_quota: Optional[GuestQuotaOut] = None
    message: str
