"""
Sappho Backup API

Serves the backup & restore engine of the Sappho media server and runs
scheduled backups in the background.

Usage:
    uvicorn sappho.main:app --reload

Scheduled backups are configured with AUTO_BACKUP_INTERVAL (hours, 0 disables)
and BACKUP_RETENTION (number of bundles to keep).
"""
import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sappho import __version__
from sappho.config import Settings, get_settings
from sappho.api.v1.router import api_router
from sappho.services.backup import BackupScheduler, BackupService

logger = logging.getLogger("sappho")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    settings: Settings = app.state.settings
    scheduler: BackupScheduler = app.state.backup_scheduler

    if settings.auto_backup_interval > 0:
        scheduler.start(settings.auto_backup_interval, settings.backup_retention)
    else:
        logger.info("Scheduled backups disabled (AUTO_BACKUP_INTERVAL=0)")

    yield
    # Shutdown: disarm the timer and let a running cycle finish
    await scheduler.aclose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger("sappho").setLevel(settings.log_level.upper())

    app = FastAPI(
        title="Sappho Backup API",
        description="Backup, restore and retention for the Sappho media server",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    service = BackupService(settings)
    app.state.settings = settings
    app.state.backup_service = service
    app.state.backup_scheduler = BackupScheduler(service)

    # Global exception handler for debugging
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.method} {request.url.path}:\n{traceback.format_exc()}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    # Routes
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


app = create_app()
