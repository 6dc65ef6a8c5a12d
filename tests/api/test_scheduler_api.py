"""Tests for scheduler inspection and manual trigger API routes."""

from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from venue_indexer.api.scheduler import router
from venue_indexer.schemas.indexing import SubmissionAction
from venue_indexer.services.batch_submitter import IndexingBatchSubmitter
from venue_indexer.services.indexing_jobs import IndexingJobService
from venue_indexer.services.indexing_logger import InMemoryLogSink, IndexingLogger
from venue_indexer.services.quota_ledger import QuotaLedger, QuotaLedgerSettings
from venue_indexer.services.quota_store import InMemoryQuotaStore
from venue_indexer.services.scheduler import SchedulerService
from venue_indexer.services.sitemap_fetcher import SitemapFetchResult
from venue_indexer.services.submission_client import SubmissionOutcome

SITEMAP_URL = "https://escaperoomsfinder.com/sitemap.xml"
SITEMAP_XML = (
    b'<?xml version="1.0" encoding="UTF-8"?>'
    b'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
    b"<url><loc>https://escaperoomsfinder.com/themes/horror</loc></url>"
    b"</urlset>"
)


async def _noop_job() -> None:
    return None


class _AcceptingClient:
    async def submit_one(
        self,
        url: str,
        action: SubmissionAction = SubmissionAction.URL_UPDATED,
    ) -> SubmissionOutcome:
        return SubmissionOutcome(url=url, accepted=True, http_status=200)


class _GatedFetcher:
    def __init__(self, *, released: bool = True) -> None:
        self.release = asyncio.Event()
        if released:
            self.release.set()

    async def __call__(self, url: str) -> SitemapFetchResult:
        await self.release.wait()
        return SitemapFetchResult(
            content=SITEMAP_XML,
            status_code=200,
            content_type="application/xml",
            url=url,
        )


def _job_service(fetcher: _GatedFetcher) -> IndexingJobService:
    ledger = QuotaLedger(
        store=InMemoryQuotaStore(),
        settings=QuotaLedgerSettings(),
        today_factory=lambda: date(2024, 5, 1),
    )
    indexing_logger = IndexingLogger(InMemoryLogSink())
    return IndexingJobService(
        submitter=IndexingBatchSubmitter(
            ledger=ledger,
            client=_AcceptingClient(),
            indexing_logger=indexing_logger,
        ),
        ledger=ledger,
        indexing_logger=indexing_logger,
        sitemap_url=SITEMAP_URL,
        fetcher=fetcher,
    )


def _app(
    *,
    scheduler: SchedulerService | None = None,
    job_service: IndexingJobService | None = None,
) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    if scheduler is not None:
        app.state.scheduler_service = scheduler
    if job_service is not None:
        app.state.indexing_job_service = job_service
    return app


def _async_client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_scheduler_api_requires_services() -> None:
    async with _async_client(_app()) as client:
        jobs_response = await client.get("/api/scheduler/jobs")
        run_response = await client.post("/api/scheduler/daily-indexing/run")

    assert jobs_response.status_code == 503
    assert jobs_response.json()["detail"] == "Scheduler service is unavailable"
    assert run_response.status_code == 503


@pytest.mark.asyncio
async def test_scheduler_api_lists_registered_jobs(tmp_path: Path) -> None:
    scheduler = SchedulerService(
        enabled=True,
        jobstore_url=f"sqlite:///{tmp_path / 'scheduler-api.sqlite'}",
    )
    scheduler.add_cron_job(job_id="api-job", func=_noop_job, hour="4", minute="0")

    await scheduler.start()
    try:
        async with _async_client(_app(scheduler=scheduler)) as client:
            response = await client.get("/api/scheduler/jobs")
            detail = await client.get("/api/scheduler/jobs/api-job")
            missing = await client.get("/api/scheduler/jobs/missing-job")
    finally:
        await scheduler.shutdown()

    assert response.status_code == 200
    payload = response.json()
    assert [job["job_id"] for job in payload] == ["api-job"]
    assert "cron" in payload[0]["trigger"].lower()
    assert payload[0]["next_run_time"] is not None
    assert detail.status_code == 200
    assert detail.json() == payload[0]
    assert missing.status_code == 404
    assert "missing-job" in missing.json()["detail"]


@pytest.mark.asyncio
async def test_scheduler_api_returns_conflict_when_disabled(tmp_path: Path) -> None:
    scheduler = SchedulerService(
        enabled=False,
        jobstore_url=f"sqlite:///{tmp_path / 'scheduler-disabled.sqlite'}",
    )

    async with _async_client(_app(scheduler=scheduler)) as client:
        response = await client.get("/api/scheduler/jobs")

    assert response.status_code == 409
    assert response.json()["detail"] == "Scheduler is disabled"


@pytest.mark.asyncio
async def test_daily_indexing_can_be_triggered_on_demand() -> None:
    job_service = _job_service(_GatedFetcher())

    async with _async_client(_app(job_service=job_service)) as client:
        response = await client.post("/api/scheduler/daily-indexing/run")

    assert response.status_code == 200
    payload = response.json()
    assert payload["type"] == "DAILY_INDEXING"
    assert payload["success"] is True
    assert payload["indexedUrls"] == ["https://escaperoomsfinder.com/themes/horror"]


@pytest.mark.asyncio
async def test_daily_indexing_trigger_conflicts_with_running_job() -> None:
    fetcher = _GatedFetcher(released=False)
    job_service = _job_service(fetcher)
    running = asyncio.create_task(job_service.run_daily_indexing())
    await asyncio.sleep(0)

    try:
        async with _async_client(_app(job_service=job_service)) as client:
            response = await client.post("/api/scheduler/daily-indexing/run")
    finally:
        fetcher.release.set()
        await running

    assert response.status_code == 409
    assert response.json()["detail"] == "Daily indexing is already running"


@pytest.mark.asyncio
async def test_scheduler_status_reports_daily_run_state(tmp_path: Path) -> None:
    scheduler = SchedulerService(
        enabled=False,
        jobstore_url=f"sqlite:///{tmp_path / 'scheduler-status.sqlite'}",
    )
    app = _app(scheduler=scheduler, job_service=_job_service(_GatedFetcher()))

    async with _async_client(app) as client:
        response = await client.get("/api/scheduler")

    assert response.status_code == 200
    assert response.json() == {
        "enabled": False,
        "running": False,
        "daily_run_in_progress": False,
    }
