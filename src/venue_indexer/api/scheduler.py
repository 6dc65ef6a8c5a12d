"""Scheduler inspection and on-demand daily run routes."""

from __future__ import annotations

from datetime import datetime
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from venue_indexer.api.dependencies import get_job_service, get_scheduler_service
from venue_indexer.schemas.indexing import IndexingLogEntry
from venue_indexer.services.indexing_jobs import IndexingJobService
from venue_indexer.services.scheduler import SchedulerJobState, SchedulerService

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])

_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (LookupError, status.HTTP_404_NOT_FOUND),
    (RuntimeError, status.HTTP_409_CONFLICT),
)


class SchedulerStatusResponse(BaseModel):
    enabled: bool
    running: bool
    daily_run_in_progress: bool


class SchedulerJobResponse(BaseModel):
    """One scheduled job and its next fire time."""

    job_id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None

    @classmethod
    def from_state(cls, job_state: SchedulerJobState) -> SchedulerJobResponse:
        return cls(
            job_id=job_state.job_id,
            name=job_state.name,
            trigger=job_state.trigger,
            next_run_time=job_state.next_run_time,
        )


def _raise_scheduler_error(error: Exception) -> NoReturn:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            raise HTTPException(status_code=status_code, detail=str(error)) from error

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Unexpected scheduler operation failure",
    ) from error


@router.get("", response_model=SchedulerStatusResponse)
async def get_scheduler_status(
    scheduler: SchedulerService = Depends(get_scheduler_service),
    job_service: IndexingJobService = Depends(get_job_service),
) -> SchedulerStatusResponse:
    return SchedulerStatusResponse(
        enabled=scheduler.enabled,
        running=scheduler.running,
        daily_run_in_progress=job_service.daily_run_in_progress,
    )


@router.get("/jobs", response_model=list[SchedulerJobResponse])
async def list_scheduler_jobs(
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> list[SchedulerJobResponse]:
    try:
        jobs = scheduler.list_jobs()
    except Exception as error:
        _raise_scheduler_error(error)
    return [SchedulerJobResponse.from_state(job) for job in jobs]


@router.get("/jobs/{job_id}", response_model=SchedulerJobResponse)
async def get_scheduler_job(
    job_id: str,
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> SchedulerJobResponse:
    try:
        return SchedulerJobResponse.from_state(scheduler.get_job(job_id))
    except Exception as error:
        _raise_scheduler_error(error)


@router.post("/daily-indexing/run", response_model=IndexingLogEntry)
async def run_daily_indexing_now(
    job_service: IndexingJobService = Depends(get_job_service),
) -> IndexingLogEntry:
    """Run the daily sitemap pass now; 409 while one is already running."""

    try:
        return await job_service.run_daily_indexing()
    except RuntimeError as error:
        _raise_scheduler_error(error)


__all__ = ["SchedulerJobResponse", "SchedulerStatusResponse", "router"]
