"""Application entry point for Venue Indexer."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from venue_indexer.api.indexing import router as indexing_router
from venue_indexer.api.scheduler import router as scheduler_router
from venue_indexer.config import Settings, get_settings, validate_indexing_config
from venue_indexer.database import close_database, initialize_database
from venue_indexer.services.indexing_jobs import (
    IndexingJobService,
    set_indexing_job_service,
)
from venue_indexer.services.scheduler import SchedulerService
from venue_indexer.utils.logging import RequestLoggingMiddleware, setup_logging

__all__ = ["app", "create_app", "main"]

_lifecycle_logger = logging.getLogger("venue_indexer.lifecycle")


def _log_configuration_problems(settings: Settings) -> None:
    problems = validate_indexing_config(settings)
    if not problems:
        return
    _lifecycle_logger.warning(
        "indexing_configuration_incomplete",
        extra={"problems": problems},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    _log_configuration_problems(settings)

    await initialize_database(settings.DATABASE_URL)

    job_service = IndexingJobService.from_settings(settings)
    scheduler_service = SchedulerService.from_settings(settings)
    set_indexing_job_service(job_service)
    app.state.indexing_job_service = job_service
    app.state.scheduler_service = scheduler_service

    job_service.register_jobs(
        scheduler_service,
        hour=settings.DAILY_INDEXING_CRON_HOUR,
        minute=settings.DAILY_INDEXING_CRON_MINUTE,
        timezone=settings.QUOTA_TIMEZONE,
    )
    await scheduler_service.start()
    _lifecycle_logger.info(
        "application_started",
        extra={"scheduler_enabled": scheduler_service.enabled},
    )

    try:
        yield
    finally:
        await scheduler_service.shutdown()
        set_indexing_job_service(None)
        await close_database()
        _lifecycle_logger.info("application_stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    resolved_settings = settings or get_settings()
    setup_logging(resolved_settings)

    app = FastAPI(title="Venue Indexer", lifespan=lifespan)
    app.state.settings = resolved_settings
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(indexing_router)
    app.include_router(scheduler_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "venue_indexer.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=False,
    )
