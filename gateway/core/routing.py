"""
routing.py — Provider routing table.

Turns the human-authored ROUTES setting into an exact-match lookup from a
logical request class ("<operation>.<tier>", e.g. "chat.fast") to the
upstream provider/model that should serve it.

Format (comma-separated, whitespace around every token is ignored):

    chat.fast=openai:gpt-4o-mini, chat.smart=anthropic:claude-3-5-sonnet,
    fim.fast=mistral:codestral

Parsing is permissive: a malformed entry is logged and dropped, the rest of
the table still loads. Unknown provider names fall back to OpenAI.

The table is built once at startup and never mutated afterwards, so it can
be shared between concurrent requests without locking.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    """Upstream AI vendors. Values are the wire identifiers."""
    CLOUDFLARE = "cf"
    MISTRAL = "mistral"
    OPENAI = "openai"
    XAI = "xai"
    GROQ = "groq"
    OPENROUTER = "openrouter"
    META = "meta"
    ANTHROPIC = "anthropic"


DEFAULT_PROVIDER = Provider.OPENAI

# Lower-cased alias → provider
_PROVIDER_ALIASES: dict[str, Provider] = {
    "cf": Provider.CLOUDFLARE,
    "cloudflare": Provider.CLOUDFLARE,
    "mistral": Provider.MISTRAL,
    "openai": Provider.OPENAI,
    "xai": Provider.XAI,
    "groq": Provider.GROQ,
    "openrouter": Provider.OPENROUTER,
    "meta": Provider.META,
    "anthropic": Provider.ANTHROPIC,
}


def normalize_provider(raw: str) -> Provider:
    """Case-insensitive alias lookup; anything unrecognised maps to OpenAI."""
    return _PROVIDER_ALIASES.get(raw.strip().lower(), DEFAULT_PROVIDER)


@dataclass(frozen=True)
class RouteTarget:
    provider: Provider
    model: str


class RoutingTable:
    """
    Read-only mapping of "<op>.<tier>" → RouteTarget.

    Build with build_routing(); query with resolve().
    """

    def __init__(self, routes: dict[str, RouteTarget], dropped: int = 0) -> None:
        self._routes = dict(routes)
        self.dropped = dropped  # malformed entries skipped while parsing

    def resolve(self, op: str, tier: str) -> Optional[RouteTarget]:
        """Return the target for *op*.*tier*, or None when no rule matches."""
        return self._routes.get(f"{op}.{tier}")

    def get(self, key: str) -> Optional[RouteTarget]:
        return self._routes.get(key)

    def as_dict(self) -> dict[str, RouteTarget]:
        return dict(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, key: object) -> bool:
        return key in self._routes

    def __iter__(self) -> Iterator[str]:
        return iter(self._routes)

    def __repr__(self) -> str:
        return f"RoutingTable({sorted(self._routes)})"


def _parse_entry(segment: str) -> Optional[tuple[str, RouteTarget]]:
    """Parse one "<op>.<tier>=<provider>:<model>" segment; None if malformed."""
    if "=" not in segment:
        return None

    lhs, _, rhs = segment.partition("=")
    lhs, rhs = lhs.strip(), rhs.strip()

    lhs_parts = [p.strip() for p in lhs.split(".")]
    if len(lhs_parts) != 2 or not all(lhs_parts):
        return None
    op, tier = lhs_parts

    # Exactly one colon: "provider:model"
    rhs_parts = rhs.split(":")
    if len(rhs_parts) != 2:
        return None
    provider_raw, model = (p.strip() for p in rhs_parts)

    return f"{op}.{tier}", RouteTarget(provider=normalize_provider(provider_raw), model=model)


def build_routing(raw: str) -> RoutingTable:
    """
    Parse a ROUTES string into a RoutingTable.

    Never raises. Empty segments (trailing or doubled commas) are ignored
    silently; malformed ones are logged at WARNING and skipped. When the same
    key appears twice the last occurrence wins.
    """
    routes: dict[str, RouteTarget] = {}
    dropped = 0

    for segment in raw.split(","):
        segment = segment.strip()
        if not segment:
            continue

        parsed = _parse_entry(segment)
        if parsed is None:
            dropped += 1
            logger.warning("Ignoring malformed route entry: %r", segment)
            continue

        key, target = parsed
        if key in routes:
            logger.debug("Route %s redefined, last definition wins", key)
        routes[key] = target

    return RoutingTable(routes, dropped=dropped)


def resolve_route(table: RoutingTable, op: str, tier: str) -> Optional[RouteTarget]:
    """Functional alias for RoutingTable.resolve()."""
    return table.resolve(op, tier)
