# oncall/main.py
"""
FastAPI application entry point.
"""

import asyncio
import os
import sys
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from oncall.core.config import AppSettings
from oncall.core.errors import SourceUnavailable
from oncall.core.logging_config import get_logger, setup_logging
from oncall.core.request_logging import RequestLoggingMiddleware
from oncall.core.sentry_config import init_sentry
from oncall.core.services import Services, build_services, get_services
from oncall.routes.export import router as export_router
from oncall.routes.history import router as history_router
from oncall.routes.status import router as status_router

SERVICE_NAME = "oncall-scheduler"
SERVICE_VERSION = "0.1.0"

logger = get_logger(__name__)


async def _startup(services: Services, autostart: bool) -> None:
    await asyncio.to_thread(services.ledger.create_tables)
    logger.info("Database tables created/verified")

    try:
        services.source.reload()
    except SourceUnavailable as e:
        # The service stays up without a schedule; the scheduler refuses to arm
        logger.error(f"Schedule could not be loaded: {e}")
        return

    await asyncio.to_thread(services.overrides.reload)
    await asyncio.to_thread(services.history.check_for_schedule_changes)
    stored = await services.history.sync_overrides_async()
    logger.info(f"Override months stored: {sorted(stored)}")

    if autostart:
        await services.scheduler.start()


def _configure_cors(app: FastAPI, production: bool) -> None:
    cors_origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()]

    if production:
        if not cors_origins:
            logger.warning(
                "Production mode but no CORS_ORIGINS set. CORS will block all cross-origin requests. "
                "Set CORS_ORIGINS environment variable if you need to allow specific origins."
            )
        allowed_origins = cors_origins
        allowed_methods = ["GET", "POST"]
        logger.info(f"CORS configured for production with origins: {allowed_origins}")
    else:
        allowed_origins = ["*"]
        allowed_methods = ["*"]
        logger.info("CORS configured for development (permissive)")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=allowed_methods,
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


def create_app(
    services: Services | None = None,
    settings: AppSettings | None = None,
    autostart: bool | None = None,
) -> FastAPI:
    """
    Build the application.

    Tests pass prebuilt `services` (with a recording sink and an in-memory
    ledger) and `autostart=False`; production builds everything from the
    environment.
    """
    settings = settings or (services.settings if services else AppSettings.from_env())
    services = services or build_services(settings)
    autostart = settings.scheduler_autostart if autostart is None else autostart

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Application starting up",
            extra={"extra_fields": {"production": settings.production, "python_version": sys.version}},
        )
        try:
            await _startup(services, autostart)
        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise

        yield

        logger.info("Application shutting down")
        await services.scheduler.stop()
        aclose = getattr(services.dispatcher.sink, "aclose", None)
        if aclose is not None:
            await aclose()

    app = FastAPI(
        title="On-call Scheduler",
        description="On-call rotation calculation, shift notifications and assignment history",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    _configure_cors(app, settings.production)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(status_router)
    app.include_router(history_router)
    app.include_router(export_router)

    @app.get("/health", tags=["health"])
    async def health_check(services: Services = Depends(get_services)):
        """
        Health check endpoint for monitoring.

        Returns 200 OK when the ledger database answers, 503 otherwise.
        """
        try:
            await asyncio.to_thread(services.ledger.ping)
        except Exception as e:
            logger.error(f"Health check failed - database connection error: {e}", exc_info=True)
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "unhealthy",
                    "service": SERVICE_NAME,
                    "database": "disconnected",
                    "error": "Database connection failed",
                },
            ) from e

        return JSONResponse(
            status_code=200,
            content={
                "status": "healthy",
                "service": SERVICE_NAME,
                "version": SERVICE_VERSION,
                "database": "connected",
                "scheduler_running": services.scheduler.is_running,
                "schedule_loaded": services.source.current is not None,
            },
        )

    return app


def build_app() -> FastAPI:
    """Entry point for uvicorn: ``uvicorn oncall.main:build_app --factory``."""
    settings = AppSettings.from_env()
    setup_logging(settings.production)
    init_sentry(settings.production)
    return create_app(settings=settings)
