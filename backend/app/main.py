"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Tests build their own app around fakes:
    app = create_app(engine=AlertEngine(FakeGateway()), sessions=SessionStore())
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware

# ── Services ──
from backend.app.alerts.alert_service import AlertEngine, build_engine
from backend.app.alerts.countdown import CountdownManager
from backend.app.profiles.session_store import SessionStore

# ── API routers ──
from backend.app.api.v1.session import router as session_router
from backend.app.api.v1.contacts import router as contacts_router
from backend.app.api.v1.sos import router as sos_router
from backend.app.api.v1.alerts import router as alerts_router
from backend.app.api.v1.health import router as health_router

setup_logging()
logger = get_logger(__name__)


async def _sweep_countdowns(countdowns: CountdownManager) -> None:
    """Drop finished countdowns once clients have had time to poll them."""
    while True:
        await asyncio.sleep(settings.COUNTDOWN_SWEEP_INTERVAL_SECONDS)
        removed = countdowns.cleanup_finished(settings.COUNTDOWN_RETENTION_SECONDS)
        if removed:
            logger.debug("Swept %d finished countdowns", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s v%s [%s] (notify=%s, verification=%s, countdown=%ds)",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.NOTIFY_PROVIDER, settings.VERIFICATION_PROVIDER,
        settings.SOS_COUNTDOWN_SECONDS,
    )
    sweeper = asyncio.create_task(_sweep_countdowns(app.state.countdowns))
    try:
        yield
    finally:
        sweeper.cancel()
        pending = [c for c in app.state.countdowns.list() if c.cancel()]
        if pending:
            logger.warning("Cancelled %d pending SOS countdowns on shutdown", len(pending))
        logger.info("Shutting down %s", settings.APP_NAME)


def create_app(
    *,
    engine: Optional[AlertEngine] = None,
    sessions: Optional[SessionStore] = None,
    countdowns: Optional[CountdownManager] = None,
) -> FastAPI:
    """Build the application; omitted services are wired from settings."""
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Personal-safety SOS service: trusted contacts, location-stamped "
            "emergency alerts, concurrent notification of emergency contacts "
            "with per-recipient failure accounting, verification anchoring "
            "and alert resolution."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.engine = engine or build_engine()
    app.state.sessions = sessions or SessionStore()
    app.state.countdowns = countdowns or CountdownManager()

    # ── Middleware (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.CORS_ALLOW_ALL else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    for router in (session_router, contacts_router, sos_router, alerts_router, health_router):
        app.include_router(router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "api": "/api/v1",
            "docs": "/docs",
        }

    return app


app = create_app()
