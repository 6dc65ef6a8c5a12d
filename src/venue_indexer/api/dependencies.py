"""FastAPI dependencies resolving services stored on ``app.state``."""

from __future__ import annotations

from typing import TypeVar

from fastapi import HTTPException, Request, status

from venue_indexer.config import Settings, get_settings
from venue_indexer.services.indexing_jobs import IndexingJobService
from venue_indexer.services.scheduler import SchedulerService

_ServiceT = TypeVar("_ServiceT")


def _state_service(
    request: Request, attribute: str, expected: type[_ServiceT], label: str
) -> _ServiceT:
    service = getattr(request.app.state, attribute, None)
    if isinstance(service, expected):
        return service

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"{label} service is unavailable",
    )


def get_job_service(request: Request) -> IndexingJobService:
    return _state_service(
        request, "indexing_job_service", IndexingJobService, "Indexing"
    )


def get_scheduler_service(request: Request) -> SchedulerService:
    return _state_service(request, "scheduler_service", SchedulerService, "Scheduler")


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if isinstance(settings, Settings) else get_settings()


__all__ = ["get_app_settings", "get_job_service", "get_scheduler_service"]
