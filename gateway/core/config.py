"""
Application configuration loaded from environment variables.

Uses pydantic-settings for type-safe env var parsing with automatic
.env file loading. All secrets are injected via environment — never
hard-coded.

Every field maps to the upper-cased env var of the same name
(e.g. ``routes`` ← ``ROUTES``, ``action_token_secret`` ← ``ACTION_TOKEN_SECRET``)
unless an explicit alias is given.

To extend: add new fields here and document them in .env.example.
See https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_SYSTEM_PROMPT = (
    "If asked about who made this or anything related to its creators, simply state: "
    "This was created by the VoidXP team. Do not mention or praise any individual or "
    "a company or any entity. Always attribute it only to the VoidXP team."
)


class Settings(BaseSettings):
    # ─── Core ──────────────────────────────────────────────────────
    environment: str = "development"
    debug: bool = False

    # host:port the server binds to when started via `voidxp-gateway`
    bind_address: str = "127.0.0.1:8080"
    # Max request body in bytes (8 MB)
    json_limit: int = 8 * 1024 * 1024

    # ─── CORS ──────────────────────────────────────────────────────
    # Comma-separated allowed origins. Empty means "any origin".
    allowed_origins_str: str = Field(default="", validation_alias="ALLOWED_ORIGINS")

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.allowed_origins_str.split(",") if o.strip()]
        return origins or ["*"]

    # Honour X-Forwarded-For for client IPs. Enable only behind a trusted
    # reverse proxy that overwrites the header.
    trust_proxy_headers: bool = False

    @property
    def bind_host(self) -> str:
        host, _, _ = self.bind_address.rpartition(":")
        return host or "127.0.0.1"

    @property
    def bind_port(self) -> int:
        _, _, port = self.bind_address.rpartition(":")
        return int(port) if port.isdigit() else 8080

    # ─── Behaviour ─────────────────────────────────────────────────
    auth_required: bool = False
    system_prompt: str = _DEFAULT_SYSTEM_PROMPT
    inject_fim_system_prompt: bool = False

    # Routing rules: "<op>.<tier>=<provider>:<model>", comma separated.
    # Parsed once at startup by gateway.core.routing.build_routing().
    routes: str = "chat.fast=openai:gpt-4o-mini"
    # Tier used when an invoke request doesn't name one
    default_tier: str = "fast"

    # ─── Guests ────────────────────────────────────────────────────
    max_guest_messages_per_day: int = Field(default=5, ge=1)
    # How often the background sweep drops expired guest windows and search cache entries
    guest_usage_sweep_seconds: int = Field(default=3600, ge=1)

    # ─── Auth ──────────────────────────────────────────────────────
    # IMPORTANT: token issuance is refused until this is set.
    # Generate: python -c "import secrets; print(secrets.token_hex(32))"
    action_token_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24 * 7
    clerk_secret_key: str = ""  # accepted but not verified yet

    # ─── AI providers ──────────────────────────────────────────────
    cf_account_id: str = ""
    cf_api_token: str = ""
    cf_base_url: str = "https://api.cloudflare.com/client/v4"

    mistral_api_key: str = ""
    mistral_base_url: str = "https://api.mistral.ai"

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com"

    xai_api_key: str = ""
    xai_base_url: str = "https://api.x.ai"

    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai"

    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api"

    meta_api_key: str = ""
    meta_base_url: str = ""

    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"

    def provider_is_configured(self, provider: str) -> bool:
        """True when credentials for *provider* (wire value, e.g. "cf") are present."""
        if provider == "cf":
            return bool(self.cf_account_id and self.cf_api_token)
        return bool(getattr(self, f"{provider}_api_key", ""))

    # ─── MongoDB ───────────────────────────────────────────────────
    # Local dev default matches a plain `docker run mongo`.
    mongo_uri: str = "mongodb://localhost:27017/voidxp"
    mongo_db_name: str = "voidxp"
    # When False, events are only logged and never written to MongoDB
    persistence_enabled: bool = True

    # ─── Web search ────────────────────────────────────────────────
    # These degrade gracefully when not set (see ai/search_adapter.py).
    enable_internet_access: bool = True
    search_cache_duration: int = 300  # seconds
    search_timeout_seconds: float = 3.5

    tavily_api_key: str = ""
    tavily_base_url: str = "https://api.tavily.com"
    brave_search_api_key: str = ""
    brave_base_url: str = "https://api.search.brave.com"
    searxng_base_url: str = "http://localhost:8090"
    searxng_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Don't fail on unknown env vars
    )


# Module-level singleton — import this everywhere instead of instantiating Settings()
settings = Settings()
