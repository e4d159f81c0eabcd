from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from alumni_rewards.core.config import settings
from alumni_rewards.core.errors import (
    LedgerError,
    global_exception_handler,
    http_exception_handler,
    ledger_exception_handler,
)

import alumni_rewards.models  # noqa: F401 — register all models at startup

from alumni_rewards.middleware.tenant import TenantMiddleware
from alumni_rewards.core.sentry import init_sentry
from alumni_rewards.modules.badges.router import router as badges_router
from alumni_rewards.modules.catalog.router import router as catalog_router
from alumni_rewards.modules.leaderboard.router import router as leaderboard_router
from alumni_rewards.modules.ledger.router import router as ledger_router
from alumni_rewards.modules.verification.router import router as verification_router

# ── Sentry — must be initialised BEFORE FastAPI app is created ────────────────
init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    logger.info("Starting rewards ledger API", env=settings.APP_ENV)
    yield
    logger.info("Shutting down rewards ledger API")
    from alumni_rewards.core.database import engine

    await engine.dispose()


_is_prod = settings.APP_ENV == "production"

app = FastAPI(
    title="Alumni Rewards Ledger API",
    description="Reward progress, verification, badges and leaderboards for alumni engagement.",
    version="0.1.0",
    docs_url=None if _is_prod else "/docs",
    redoc_url=None if _is_prod else "/redoc",
    openapi_url=None if _is_prod else "/openapi.json",
    lifespan=lifespan,
)

app.add_exception_handler(LedgerError, ledger_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Accept",
        "X-Request-ID",
        "X-User-Id",
        "X-Tenant-Id",
        "X-User-Role",
        "X-User-Department",
    ],
)
app.add_middleware(TenantMiddleware)


# ── X-API-Version response header ────────────────────────────────────────────


@app.middleware("http")
async def add_version_header(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-API-Version"] = "v1"
    return response


# ── Health check (root-level, not under /v1) ─────────────────────────────────


@app.get("/health")
async def health_check() -> dict:
    """Deep health check: probes the database and the Celery broker."""
    checks: dict[str, dict] = {}

    try:
        from sqlalchemy import text
        from alumni_rewards.core.database import async_session_factory
        async with async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as exc:
        checks["database"] = {"status": "unhealthy", "error": str(exc)}

    try:
        from redis.asyncio import from_url as redis_from_url
        r = redis_from_url(settings.CELERY_BROKER_URL, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
        checks["broker"] = {"status": "healthy"}
    except Exception as exc:
        checks["broker"] = {"status": "unhealthy", "error": str(exc)}

    overall = (
        "healthy"
        if all(c["status"] == "healthy" for c in checks.values())
        else "degraded"
    )
    return {"status": overall, "service": "alumni-rewards", "checks": checks}


# ── /v1 versioned router ──────────────────────────────────────────────────────

api_v1 = APIRouter(prefix="/v1")

# Fixed-path routers first; the catalog's /rewards/{reward_id} would shadow them
api_v1.include_router(badges_router)
api_v1.include_router(verification_router)
api_v1.include_router(leaderboard_router)
api_v1.include_router(ledger_router)
api_v1.include_router(catalog_router)

app.include_router(api_v1)
