"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import Settings, settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Pipeline ──
from backend.app.notifications.channels.web_push import build_push_transport
from backend.app.notifications.ledger import DEDUP_WINDOW
from backend.app.notifications.pipeline import PipelineContext
from backend.app.notifications.stores import (
    InMemoryGeoIndex,
    InMemoryLedgerStore,
    InMemoryNotificationStore,
)
from backend.app.reminders.scheduler import InMemorySessionSource, ReminderRegistry

# ── API routers ──
from backend.app.api.v1.notifications import router as notification_router
from backend.app.api.v1.reminders import router as reminder_router
from backend.app.api.v1.triggers import router as trigger_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


async def build_pipeline_context(cfg: Settings = settings) -> PipelineContext:
    """Wire the store backends selected in settings."""
    if cfg.STORE_BACKEND == "sql" or cfg.GEO_BACKEND == "sql":
        from backend.app.core.database import get_session_factory, init_db

        await init_db()
        session_factory = get_session_factory()

    if cfg.STORE_BACKEND == "sql":
        from backend.app.notifications.sql_store import SqlLedgerStore, SqlNotificationStore

        ledger = SqlLedgerStore(session_factory, DEDUP_WINDOW)
        notification_store = SqlNotificationStore(session_factory)
    else:
        ledger = InMemoryLedgerStore(DEDUP_WINDOW)
        notification_store = InMemoryNotificationStore()

    if cfg.GEO_BACKEND == "redis":
        from backend.app.core.redis_client import get_redis
        from backend.app.notifications.redis_geo import RedisGeoIndex

        geo_index = RedisGeoIndex(await get_redis(), cfg.REDIS_GEO_KEY, cfg.REDIS_GHOST_KEY)
    elif cfg.GEO_BACKEND == "sql":
        from backend.app.notifications.sql_store import SqlGeoIndex

        geo_index = SqlGeoIndex(session_factory)
    else:
        geo_index = InMemoryGeoIndex()

    logger.info(
        "Pipeline backends: store=%s geo=%s push=%s",
        cfg.STORE_BACKEND, cfg.GEO_BACKEND,
        "gateway" if cfg.PUSH_GATEWAY_URL else "logging",
    )
    return PipelineContext(
        geo_index=geo_index,
        ledger=ledger,
        notification_store=notification_store,
        push_transport=build_push_transport(),
        dedup_window=DEDUP_WINDOW,
    )


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    app.state.pipeline = await build_pipeline_context()
    app.state.reminders = ReminderRegistry(InMemorySessionSource())
    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    await app.state.reminders.shutdown()
    await app.state.pipeline.push_transport.close()
    if settings.GEO_BACKEND == "redis":
        from backend.app.core.redis_client import close_redis

        await close_redis()
    if "sql" in (settings.STORE_BACKEND, settings.GEO_BACKEND):
        from backend.app.core.database import close_db

        await close_db()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Urgency-aware notification pipeline for community safety alerts. "
        "Scores incident urgency, fans events out to nearby users, "
        "suppresses repeat notifications within a dedup window, "
        "persists in-app notifications, hands push payloads to the "
        "push gateway, and keeps gentle reminders for unresolved "
        "panic and look-after-me sessions."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(notification_router)
app.include_router(reminder_router)
app.include_router(trigger_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "urgency-scoring",
            "fan-out",
            "dedup-ledger",
            "dispatch",
            "triggers",
            "deep-links",
            "reminders",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Deep health probe — checks the configured backends."""
    report = await run_health_check()
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check()
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
