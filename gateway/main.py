"""
VoidXP Gateway — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups, and
manages the MongoDB connection and expiry sweeper lifecycles.

Extension points:
  - Add new route groups with app.include_router() below
  - Add new middleware in the middleware block
  - Change startup behaviour in the lifespan context manager
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from gateway.ai.search_adapter import SearchService, search_service
from gateway.core.config import settings
from gateway.core.database import close_mongo_connection, connect_to_mongo
from gateway.core.guest_quota import GuestQuotaLimiter
from gateway.core.rate_limit import limiter
from gateway.core.routing import build_routing
from gateway.routes.analytics import router as analytics_router
from gateway.routes.auth import router as auth_router
from gateway.routes.health import API_VERSION
from gateway.routes.health import router as health_router
from gateway.routes.invoke import router as invoke_router

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def sweep_expired_state(
    guest_limiter: GuestQuotaLimiter,
    searcher: SearchService,
    interval: float,
) -> None:
    """Periodically drop ended guest windows and stale search cache entries."""
    while True:
        await asyncio.sleep(interval)
        removed = guest_limiter.purge_expired()
        if removed:
            logger.info("Guest usage sweep removed %d expired entries", removed)
        evicted = searcher.cleanup_cache()
        if evicted:
            logger.info("Search cache sweep removed %d expired entries", evicted)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage startup and shutdown lifecycle.

    Code before `yield` runs on startup; code after runs on shutdown.
    """
    logger.info("Starting VoidXP Gateway (env: %s)", settings.environment)
    logger.info(
        "Routing table loaded: %d routes (%d malformed entries skipped)",
        len(app.state.routing_table),
        app.state.routing_table.dropped,
    )
    await connect_to_mongo()
    sweeper = asyncio.create_task(
        sweep_expired_state(
            app.state.guest_limiter, search_service, settings.guest_usage_sweep_seconds
        )
    )
    yield
    logger.info("Shutting down VoidXP Gateway")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="VoidXP Gateway",
    description=(
        "Unified AI gateway: routes chat and fill-in-the-middle requests to "
        "upstream providers, with guest quotas, web search and attachments."
    ),
    version=API_VERSION,
    lifespan=lifespan,
    # Disable docs in production to reduce attack surface
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)

# Shared, explicitly constructed state; routes reach it through dependencies
app.state.routing_table = build_routing(settings.routes)
app.state.guest_limiter = GuestQuotaLimiter(settings.max_guest_messages_per_day)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
# Attach the limiter to app state so slowapi can find it.
# Routes opt-in with @limiter.limit("N/minute") + request: Request parameter.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ─── Middleware ─────────────────────────────────────────────────────────────────
@app.middleware("http")
async def enforce_body_limit(request: Request, call_next):
    """Reject bodies larger than JSON_LIMIT before they are read."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > settings.json_limit:
        logger.warning(
            "Rejected %s %s: body of %s bytes exceeds limit",
            request.method,
            request.url.path,
            declared,
        )
        return JSONResponse(
            status_code=413,
            content={"detail": f"Request body exceeds {settings.json_limit} bytes"},
        )
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s → %d (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


# CORS: browser clients call the gateway directly.
# In production, restrict ALLOWED_ORIGINS to your actual domains.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(auth_router)
app.include_router(analytics_router)
app.include_router(invoke_router)


@app.get("/", tags=["root"])
async def root():
    """Gateway root — basic metadata."""
    return {
        "name": "VoidXP Gateway",
        "version": API_VERSION,
        "status": "running",
        "environment": settings.environment,
        "routes": len(app.state.routing_table),
        "docs": "/docs" if settings.environment != "production" else None,
    }


def run() -> None:
    """Console entry point: serve on BIND_ADDRESS."""
    import uvicorn

    uvicorn.run(
        "gateway.main:app",
        host=settings.bind_host,
        port=settings.bind_port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run()
