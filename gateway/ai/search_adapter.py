"""
SearchService — Live web search for chat requests that need fresh facts.

Providers are tried in order and the first one that returns results wins:
  1. Tavily   (TAVILY_API_KEY)
  2. Brave    (BRAVE_SEARCH_API_KEY)
  3. SearXNG  (self-hosted, SEARXNG_ENABLED)

Graceful degradation: an unconfigured or failing provider is skipped with a
logged warning. When nothing answers, the response carries provider "none"
and no results; the chat request still goes ahead without search context.

Responses are cached in-process per query for SEARCH_CACHE_DURATION seconds.
"""

import logging
import re
import time
from typing import Any

import httpx

from gateway.core.config import settings
from gateway.models.invoke import SearchResponse, SearchResult

logger = logging.getLogger(__name__)

MAX_RESULTS = 5
SEARXNG_TIMEOUT_SECONDS = 5.0

# Phrases that suggest the answer depends on information newer than the model
_FRESHNESS_PATTERNS = [
    re.compile(r"\b(current|today|now|latest|recent|live|real[\s-]?time)\b"),
    re.compile(r"\b(price|cost|worth|value|rate|stock|market)\b"),
    re.compile(r"\b(weather|temperature|forecast|climate)\b"),
    re.compile(r"\b(news|happening|event|update|announcement)\b"),
    re.compile(r"\b(score|game|match|tournament|competition)\b"),
    re.compile(r"\b20(2[4-9]|[3-9]\d)\b"),
    re.compile(
        r"\b(january|february|march|april|may|june|july|august|september|october|november|december)"
        r"\s+\d{1,2},?\s*20(2[4-9]|[3-9]\d)\b"
    ),
    re.compile(r"\bwhat\s+(is|are|was|were)\s+the\b"),
    re.compile(r"\bhow\s+(much|many|long|far|old)\s+(is|are|does|do)\b"),
    re.compile(
        r"\b(who|what|when|where|which)\s+.*\s+"
        r"(win|won|winning|winner|elected|announced|released|launched)\b"
    ),
]


class SearchService:
    """
    Async multi-provider web search with a small TTL cache.

    Configuration is read from settings at construction time; tests build
    their own instance and adjust the attributes directly.
    """

    def __init__(self) -> None:
        self.enabled = settings.enable_internet_access
        self.cache_duration = settings.search_cache_duration
        self.timeout = settings.search_timeout_seconds

        self.tavily_api_key = settings.tavily_api_key
        self.tavily_base_url = settings.tavily_base_url.rstrip("/")
        self.brave_api_key = settings.brave_search_api_key
        self.brave_base_url = settings.brave_base_url.rstrip("/")
        self.searxng_enabled = settings.searxng_enabled
        self.searxng_base_url = settings.searxng_base_url.rstrip("/")

        # query cache key → (response, monotonic time stored)
        self._cache: dict[str, tuple[SearchResponse, float]] = {}

        if self.enabled and not (self.tavily_api_key or self.brave_api_key or self.searxng_enabled):
            logger.warning(
                "Internet access enabled but no search provider configured — "
                "searches will return no results."
            )

    def needs_internet_search(self, query: str) -> bool:
        """Heuristic: does this query ask about something current?"""
        if not self.enabled:
            return False
        lowered = query.lower()
        return any(pattern.search(lowered) for pattern in _FRESHNESS_PATTERNS)

    async def perform_web_search(self, query: str) -> SearchResponse:
        """
        Search the web for `query`.

        Returns:
            SearchResponse with up to MAX_RESULTS results. Never raises;
            provider is "none" when every provider failed or was skipped.
        """
        cache_key = f"search:{query}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            response, stored_at = cached
            if time.monotonic() - stored_at < self.cache_duration:
                logger.debug("Search cache hit for %r", query)
                return response

        started = time.perf_counter()
        results: list[SearchResult] = []
        provider = "none"

        for name, configured, search in (
            ("tavily", bool(self.tavily_api_key), self._search_tavily),
            ("brave", bool(self.brave_api_key), self._search_brave),
            ("searxng", self.searxng_enabled, self._search_searxng),
        ):
            if not configured:
                continue
            try:
                found = await search(query)
            except Exception as exc:
                logger.warning("Search provider %s failed, trying next: %s", name, exc)
                continue
            if found:
                results = found[:MAX_RESULTS]
                provider = name
                break

        response = SearchResponse(
            query=query,
            results=results,
            provider=provider,
            took_ms=int((time.perf_counter() - started) * 1000),
        )
        logger.info(
            "Web search via %s returned %d results in %dms",
            provider,
            len(results),
            response.took_ms,
        )
        self._cache[cache_key] = (response, time.monotonic())
        return response

    def cleanup_cache(self) -> int:
        """Drop expired cache entries. Returns how many were removed."""
        now = time.monotonic()
        expired = [
            key for key, (_, stored_at) in self._cache.items()
            if now - stored_at >= self.cache_duration
        ]
        for key in expired:
            del self._cache[key]
        return len(expired)

    # ── Providers ─────────────────────────────────────────────────────────

    async def _search_tavily(self, query: str) -> list[SearchResult]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.tavily_base_url}/search",
                headers={"Content-Type": "application/json", "api-key": self.tavily_api_key},
                json={
                    "api_key": self.tavily_api_key,
                    "query": query,
                    "search_depth": "basic",
                    "include_answer": True,
                    "include_raw_content": False,
                    "max_results": MAX_RESULTS,
                },
            )
            response.raise_for_status()
            data = response.json()

        return [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("url", ""),
                snippet=item.get("content", ""),
                score=item.get("score"),
            )
            for item in data.get("results", [])
        ]

    async def _search_brave(self, query: str) -> list[SearchResult]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                f"{self.brave_base_url}/v1/web/search",
                headers={"X-Subscription-Token": self.brave_api_key, "Accept": "application/json"},
                params={"q": query, "count": MAX_RESULTS, "search_lang": "en"},
            )
            response.raise_for_status()
            data = response.json()

        web = data.get("web") or {}
        return [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("url", ""),
                snippet=item.get("description", ""),
            )
            for item in web.get("results", [])
        ]

    async def _search_searxng(self, query: str) -> list[SearchResult]:
        async with httpx.AsyncClient(timeout=SEARXNG_TIMEOUT_SECONDS) as client:
            response = await client.get(
                f"{self.searxng_base_url}/search",
                params={"q": query, "format": "json", "safesearch": "1", "pageno": "1"},
            )
            response.raise_for_status()
            data: Any = response.json()

        # Instances return either {"results": [...]} or a bare list
        items = data.get("results", []) if isinstance(data, dict) else data
        return [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("url", ""),
                snippet=item.get("content") or "No content available",
            )
            for item in items[:MAX_RESULTS]
        ]


def format_search_context(response: SearchResponse) -> str:
    """Render search results as a block to append to the system prompt."""
    if not response.results:
        return ""

    lines = [f'Web search results for "{response.query}" (via {response.provider}):']
    for i, result in enumerate(response.results, start=1):
        lines.append(f"[{i}] {result.title}\n    {result.url}\n    {result.snippet}")
    lines.append("Use these results when they are relevant and cite the source URLs.")
    return "\n\n".join(lines)


# Module-level singleton
search_service = SearchService()
