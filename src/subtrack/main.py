"""
FastAPI application exposing the cron trigger and a health check.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from subtrack.db import check_database_health, dispose_engine
from subtrack.exceptions import SubTrackError
from subtrack.logging import setup_logging
from subtrack.scheduler.router import router as scheduler_router
from subtrack.scheduler.service import ReminderScheduler
from subtrack.settings import get_settings

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info("app.starting", app=settings.app_name, environment=settings.environment.value)
    yield
    await dispose_engine()
    logger.info("app.stopped")


async def subtrack_error_handler(request: Request, exc: SubTrackError) -> JSONResponse:
    logger.warning(
        "request.failed",
        path=request.url.path,
        error_code=exc.error_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(scheduler_factory: Callable[[], ReminderScheduler] | None = None) -> FastAPI:
    """Build the application; ``scheduler_factory`` replaces the default scheduler."""
    setup_logging()
    settings = get_settings()
    app = FastAPI(title="SubTrack", version=settings.app_version, lifespan=lifespan)
    app.state.scheduler_factory = scheduler_factory

    app.add_exception_handler(SubTrackError, subtrack_error_handler)  # type: ignore[arg-type]
    app.include_router(scheduler_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        healthy = await check_database_health()
        return {"status": "healthy" if healthy else "degraded"}

    return app


__all__ = ["create_app", "lifespan", "subtrack_error_handler"]
