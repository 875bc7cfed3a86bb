"""
FastAPI application entry point.

Run with:
    uvicorn bantay.app.main:app --reload --port 8000

Tests build their own instance with create_app(), injecting a session
factory and services bound to a throwaway database.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# ── Core infrastructure ──
from bantay.app.core.config import settings
from bantay.app.core.logging_config import setup_logging, get_logger
from bantay.app.core.errors import register_error_handlers
from bantay.app.core.middleware import RequestLoggingMiddleware
from bantay.app.core.health import HealthStatus, run_health_check
from bantay.app.core.cache import close_redis
from bantay.app.core import database

# ── Services ──
from bantay.app.alerts.alert_service import AlertService
from bantay.app.rescue.service import RescueRequestService

# ── API routers ──
from bantay.app.api.v1.alerts import router as alert_router
from bantay.app.api.v1.rescue import router as rescue_router
from bantay.app.api.v1.users import router as user_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    alert_service: Optional[AlertService] = None,
    rescue_service: Optional[RescueRequestService] = None,
) -> FastAPI:
    """
    Build the application.

    Services that are passed in are installed on app.state right away;
    anything missing is created from the configured database on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s] for Barangay %s",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT, settings.BARANGAY_NAME,
        )
        if getattr(app.state, "session_factory", None) is None:
            app.state.session_factory = database.get_session_factory()
            await database.init_db()
        factory = app.state.session_factory
        if getattr(app.state, "alert_service", None) is None:
            app.state.alert_service = AlertService(factory)
        if getattr(app.state, "rescue_service", None) is None:
            app.state.rescue_service = RescueRequestService(factory)

        yield

        logger.info("Shutting down %s", settings.APP_NAME)
        await app.state.alert_service.shutdown()
        await close_redis()
        await database.close_db()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Barangay emergency alerting and rescue coordination. "
            "Officials draft, publish, extend and deactivate geo-targeted "
            "alerts delivered over SMS, email, push and a live web feed; "
            "residents acknowledge alerts and submit rescue requests that "
            "responders work through a tracked status workflow."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.session_factory = session_factory
    app.state.alert_service = alert_service
    app.state.rescue_service = rescue_service

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
    app.include_router(alert_router)
    app.include_router(rescue_router)
    app.include_router(user_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "barangay": settings.BARANGAY_NAME,
            "modules": [
                "alert-lifecycle",
                "geo-targeting",
                "multi-channel-dispatch",
                "acknowledgments",
                "rescue-requests",
                "user-directory",
            ],
            "docs": "/docs",
        }

    def _in_flight() -> Optional[int]:
        service = getattr(app.state, "alert_service", None)
        return service.dispatcher.in_flight if service is not None else None

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health check — checks all subsystems."""
        report = await run_health_check(dispatch_in_flight=_in_flight())
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Liveness check — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Readiness check — can we serve traffic?"""
        report = await run_health_check(dispatch_in_flight=_in_flight())
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
