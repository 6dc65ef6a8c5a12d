"""APScheduler wrapper owning the cron-driven indexing jobs."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from apscheduler.events import (  # type: ignore[import-untyped]
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    EVENT_JOB_SUBMITTED,
    JobEvent,
)
from apscheduler.job import Job  # type: ignore[import-untyped]
from apscheduler.jobstores.sqlalchemy import (  # type: ignore[import-untyped]
    SQLAlchemyJobStore,
)
from apscheduler.schedulers.asyncio import (  # type: ignore[import-untyped]
    AsyncIOScheduler,
)
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from venue_indexer.config import Settings

JobCallable = Callable[[], Awaitable[None] | None]

_LOGGER = logging.getLogger("venue_indexer.scheduler")

_JOB_EVENT_MASK = (
    EVENT_JOB_SUBMITTED | EVENT_JOB_EXECUTED | EVENT_JOB_MISSED | EVENT_JOB_ERROR
)
_EVENT_NAMES = {
    EVENT_JOB_SUBMITTED: ("scheduler_job_started", logging.INFO),
    EVENT_JOB_EXECUTED: ("scheduler_job_succeeded", logging.INFO),
    EVENT_JOB_MISSED: ("scheduler_job_missed", logging.WARNING),
    EVENT_JOB_ERROR: ("scheduler_job_failed", logging.ERROR),
}
_UNKNOWN_EVENT = ("scheduler_job_event", logging.DEBUG)


@dataclass(slots=True, frozen=True)
class SchedulerJobState:
    """Read-only view of one scheduled job."""

    job_id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None

    @classmethod
    def from_job(cls, job: Job) -> SchedulerJobState:
        return cls(
            job_id=job.id,
            name=job.name,
            trigger=str(job.trigger),
            next_run_time=getattr(job, "next_run_time", None),
        )


def _log_job_event(event: JobEvent) -> None:
    event_name, level = _EVENT_NAMES.get(event.code, _UNKNOWN_EVENT)
    extra: dict[str, Any] = {"job_id": event.job_id}
    exception = getattr(event, "exception", None)
    if exception is not None:
        extra["exception"] = repr(exception)
        extra["traceback"] = getattr(event, "traceback", None)
    _LOGGER.log(level, event_name, extra=extra)


class SchedulerService:
    """Start, stop and inspect a persistent AsyncIO scheduler.

    A disabled service never starts its scheduler, and every job operation
    on it raises ``RuntimeError``.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        jobstore_url: str,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._enabled = enabled
        if scheduler is None:
            scheduler = AsyncIOScheduler(
                jobstores={"default": SQLAlchemyJobStore(url=jobstore_url)},
                job_defaults={"coalesce": True, "max_instances": 1},
            )
        self._scheduler = scheduler
        self._scheduler.add_listener(_log_job_event, _JOB_EVENT_MASK)

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerService:
        return cls(
            enabled=settings.SCHEDULER_ENABLED,
            jobstore_url=settings.SCHEDULER_JOBSTORE_URL,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def running(self) -> bool:
        return self._enabled and bool(self._scheduler.running)

    async def start(self) -> None:
        if not self._enabled:
            _LOGGER.info("scheduler_disabled")
            return
        if not self._scheduler.running:
            self._scheduler.start()
            _LOGGER.info(
                "scheduler_started",
                extra={"job_ids": [job.id for job in self._scheduler.get_jobs()]},
            )

    async def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            _LOGGER.info("scheduler_shutdown")

    def add_cron_job(
        self,
        *,
        job_id: str,
        func: JobCallable,
        minute: str = "0",
        hour: str = "*",
        timezone: str | None = None,
        name: str | None = None,
    ) -> SchedulerJobState:
        """Register ``func`` on a cron schedule, replacing any job with the id."""

        self._require_enabled()
        trigger = CronTrigger(hour=hour, minute=minute, timezone=timezone)
        job = self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=name,
            replace_existing=True,
        )
        _LOGGER.info(
            "scheduler_job_registered",
            extra={"job_id": job_id, "trigger": str(trigger)},
        )
        return SchedulerJobState.from_job(job)

    def list_jobs(self) -> list[SchedulerJobState]:
        self._require_enabled()
        return [SchedulerJobState.from_job(job) for job in self._scheduler.get_jobs()]

    def get_job(self, job_id: str) -> SchedulerJobState:
        self._require_enabled()
        job = self._scheduler.get_job(job_id)
        if job is None:
            raise LookupError(f"Scheduler job {job_id!r} does not exist")
        return SchedulerJobState.from_job(job)

    def _require_enabled(self) -> None:
        if not self._enabled:
            raise RuntimeError("Scheduler is disabled")


__all__ = ["JobCallable", "SchedulerJobState", "SchedulerService"]
