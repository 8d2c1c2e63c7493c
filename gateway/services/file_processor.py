"""
file_processor.py — Turn chat attachments into prompt context.

Strategy:
  - Images: passed through by URL; multimodal models read them directly.
  - data: URLs: decoded inline (base64 or percent-encoded).
  - http(s) URLs: fetched with httpx, text content types only, 10 MiB cap.

A failing attachment never fails the request: it is logged and shows up in
the context as "[File: <name> - Processing failed]".
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import unquote

import httpx

from gateway.models.invoke import Attachment, ChatMessage

logger = logging.getLogger(__name__)

MAX_FETCH_BYTES = 10 * 1024 * 1024
PREVIEW_CHARS = 2000
FETCH_TIMEOUT_SECONDS = 15.0

_TEXT_APPLICATION_TYPES = (
    "application/json",
    "application/javascript",
    "application/xml",
    "application/yaml",
    "application/x-yaml",
)


class AttachmentError(ValueError):
    """An attachment could not be decoded or fetched."""


@dataclass
class ProcessedAttachment:
    name: str
    content_type: str
    content: str       # text body, or the URL for images
    is_image: bool = False


@dataclass
class ProcessResult:
    processed_attachments: list[ProcessedAttachment] = field(default_factory=list)
    context_prompt: str = ""

    @property
    def image_count(self) -> int:
        return sum(1 for a in self.processed_attachments if a.is_image)


def decode_data_url(data_url: str) -> str:
    """
    Decode a `data:[<mime>][;base64],<payload>` URL to text.

    Raises:
        AttachmentError: not a data URL, missing comma, bad base64 or
                         payload that is not UTF-8.
    """
    if not data_url.startswith("data:"):
        raise AttachmentError("Invalid data URL format")
    meta, sep, payload = data_url[5:].partition(",")
    if not sep:
        raise AttachmentError("Invalid data URL format")

    if ";base64" in meta:
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AttachmentError(f"Failed to decode base64: {exc}") from exc
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AttachmentError(f"Failed to convert to UTF-8: {exc}") from exc

    try:
        return unquote(payload, errors="strict")
    except UnicodeDecodeError as exc:
        raise AttachmentError(f"Failed to URL decode: {exc}") from exc


def is_text_content_type(content_type: str) -> bool:
    lowered = content_type.lower().strip()
    if lowered.startswith("text/"):
        return True
    return any(t in lowered for t in _TEXT_APPLICATION_TYPES)


async def fetch_url_content(client: httpx.AsyncClient, url: str) -> str:
    """
    GET *url* and return its body as text.

    Raises:
        AttachmentError: transport error, non-2xx status, non-text content
                         type, oversized body or non UTF-8 body.
    """
    try:
        async with client.stream("GET", url) as response:
            if response.is_error:
                raise AttachmentError(f"HTTP error {response.status_code}: {url}")

            content_type = response.headers.get("content-type", "")
            if not is_text_content_type(content_type):
                raise AttachmentError(f"Non-text content type: {content_type}")

            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > MAX_FETCH_BYTES:
                raise AttachmentError(f"File too large: {declared} bytes")

            # Stop reading as soon as the cap is crossed
            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > MAX_FETCH_BYTES:
                    raise AttachmentError(f"File too large: over {MAX_FETCH_BYTES} bytes")
    except httpx.HTTPError as exc:
        raise AttachmentError(f"Failed to fetch URL: {exc}") from exc

    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise AttachmentError(f"Failed to convert to UTF-8: {exc}") from exc


async def _process_one(client: httpx.AsyncClient, attachment: Attachment) -> ProcessedAttachment:
    if attachment.content_type.startswith("image/"):
        return ProcessedAttachment(
            name=attachment.name,
            content_type=attachment.content_type,
            content=attachment.url,
            is_image=True,
        )

    if attachment.url.startswith("data:"):
        content = decode_data_url(attachment.url)
    elif attachment.url.startswith(("http://", "https://")):
        content = await fetch_url_content(client, attachment.url)
    else:
        raise AttachmentError(f"Unsupported URL scheme: {attachment.url[:32]}")

    return ProcessedAttachment(
        name=attachment.name,
        content_type=attachment.content_type,
        content=content,
    )


def _context_entry(processed: ProcessedAttachment) -> str:
    if processed.is_image:
        return f"[Image: {processed.name}]"

    header = f"[File: {processed.name} ({processed.content_type})]"
    preview = processed.content
    if len(preview) > PREVIEW_CHARS:
        preview = preview[:PREVIEW_CHARS] + "... (truncated)"
    return f"{header}\n{preview}" if preview else header


async def process_file_attachments(
    attachments: list[Attachment],
    client: Optional[httpx.AsyncClient] = None,
) -> ProcessResult:
    """
    Process every attachment and build the context prompt.

    Args:
        attachments: Attachments from the invoke request.
        client:      Shared httpx client; one is created when omitted.
    """
    if not attachments:
        return ProcessResult()

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=FETCH_TIMEOUT_SECONDS, follow_redirects=True)

    result = ProcessResult()
    parts: list[str] = []
    try:
        for attachment in attachments:
            try:
                processed = await _process_one(client, attachment)
            except AttachmentError as exc:
                logger.error("Failed to process attachment %s: %s", attachment.name, exc)
                parts.append(f"[File: {attachment.name} - Processing failed]")
                continue
            result.processed_attachments.append(processed)
            parts.append(_context_entry(processed))
    finally:
        if owns_client:
            await client.aclose()

    if parts:
        result.context_prompt = (
            "\n\n--- Attached Files ---\n"
            + "\n\n".join(parts)
            + "\n--- End of Files ---\n\n"
            "Please analyze the attached files and respond to the user's query."
        )
    return result


def supports_multimodal(provider: str, model: str) -> bool:
    """Whether provider/model accepts image input directly."""
    provider = provider.lower()
    model = model.lower()
    if provider == "openai":
        return "gpt-4o" in model or "gpt-4-vision" in model
    if provider == "anthropic":
        return "claude-3" in model
    if provider == "openrouter":
        return any(m in model for m in ("gpt-4", "claude-3", "llava", "vision"))
    return False


def create_messages_with_file_context(
    messages: list[ChatMessage],
    context_prompt: str,
) -> list[ChatMessage]:
    if not context_prompt:
        return list(messages)
    return [ChatMessage(role="system", content=context_prompt.strip()), *messages]
