"""Daily, manual and automatic indexing runs wired to the submitter."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta

from venue_indexer.config import Settings, get_settings
from venue_indexer.schemas.indexing import (
    IndexingLogEntry,
    IndexingRequest,
    IndexingRunType,
    SubmissionAction,
)
from venue_indexer.services.batch_submitter import IndexingBatchSubmitter
from venue_indexer.services.google_indexing_client import build_submission_client
from venue_indexer.services.indexing_logger import IndexingLogger
from venue_indexer.services.quota_ledger import QuotaLedger
from venue_indexer.services.quota_store import SQLQuotaStore
from venue_indexer.services.scheduler import SchedulerService
from venue_indexer.services.sitemap_fetcher import (
    SitemapFetchError,
    SitemapFetchResult,
    fetch_sitemap,
)
from venue_indexer.services.sitemap_url_parser import (
    SitemapParseError,
    is_sitemap_index,
    parse_sitemap_index,
    parse_sitemap_urls_stream,
)

DAILY_INDEXING_JOB_ID = "daily-indexing"

SitemapFetcher = Callable[[str], Awaitable[SitemapFetchResult]]

_LOGGER = logging.getLogger("venue_indexer.jobs")

_job_service: IndexingJobService | None = None


class DailyIndexingInProgressError(RuntimeError):
    """A daily run was requested while another one is still running."""


def _recent_records(
    content: bytes, since: datetime, seen: set[str]
) -> list[IndexingRequest]:
    requests: list[IndexingRequest] = []
    for record in parse_sitemap_urls_stream(content):
        if record.url in seen:
            continue
        if record.lastmod is not None and record.lastmod < since:
            continue
        seen.add(record.url)
        requests.append(
            IndexingRequest(url=record.url, discovered_at=record.lastmod or since)
        )
    return requests


async def collect_recent_sitemap_urls(
    sitemap_url: str,
    since: datetime,
    *,
    fetcher: SitemapFetcher = fetch_sitemap,
) -> list[IndexingRequest]:
    """Return sitemap URLs modified on or after ``since``.

    Entries without ``lastmod`` are always included. A sitemap index is
    followed one level; child sitemaps that fail to load are skipped.
    """

    root = await fetcher(sitemap_url)
    seen: set[str] = set()
    if not is_sitemap_index(root.content):
        return _recent_records(root.content, since, seen)

    requests: list[IndexingRequest] = []
    for child_url in parse_sitemap_index(root.content):
        try:
            child = await fetcher(child_url)
            requests.extend(_recent_records(child.content, since, seen))
        except (SitemapFetchError, SitemapParseError):
            _LOGGER.warning(
                "sitemap_child_skipped",
                exc_info=True,
                extra={"sitemap_url": child_url},
            )
    return requests


class IndexingJobService:
    """Entry points for every kind of indexing run."""

    def __init__(
        self,
        *,
        submitter: IndexingBatchSubmitter,
        ledger: QuotaLedger,
        indexing_logger: IndexingLogger,
        sitemap_url: str,
        lookback_hours: int = 24,
        fetcher: SitemapFetcher = fetch_sitemap,
        now_factory: Callable[[], datetime] | None = None,
    ) -> None:
        self._submitter = submitter
        self._ledger = ledger
        self._indexing_logger = indexing_logger
        self._sitemap_url = sitemap_url
        self._lookback = timedelta(hours=lookback_hours)
        self._fetcher = fetcher
        self._now_factory = now_factory or (lambda: datetime.now(UTC))
        self._daily_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> IndexingJobService:
        resolved_settings = settings or get_settings()
        ledger = QuotaLedger(store=SQLQuotaStore(), settings=resolved_settings)
        indexing_logger = IndexingLogger.for_file(
            resolved_settings.INDEXING_LOG_FILE,
            timezone=resolved_settings.QUOTA_TIMEZONE,
        )
        submitter = IndexingBatchSubmitter.from_settings(
            resolved_settings,
            ledger=ledger,
            client=build_submission_client(resolved_settings),
            indexing_logger=indexing_logger,
        )
        return cls(
            submitter=submitter,
            ledger=ledger,
            indexing_logger=indexing_logger,
            sitemap_url=resolved_settings.sitemap_url,
            lookback_hours=resolved_settings.DAILY_INDEXING_LOOKBACK_HOURS,
        )

    @property
    def submitter(self) -> IndexingBatchSubmitter:
        return self._submitter

    @property
    def ledger(self) -> QuotaLedger:
        return self._ledger

    @property
    def indexing_logger(self) -> IndexingLogger:
        return self._indexing_logger

    @property
    def daily_run_in_progress(self) -> bool:
        return self._daily_lock.locked()

    def register_jobs(
        self,
        scheduler: SchedulerService,
        *,
        hour: str,
        minute: str,
        timezone: str | None = None,
    ) -> None:
        if not scheduler.enabled:
            return

        scheduler.add_cron_job(
            job_id=DAILY_INDEXING_JOB_ID,
            func=run_scheduled_daily_indexing_job,
            hour=hour,
            minute=minute,
            timezone=timezone,
            name="Daily sitemap indexing",
        )

    async def run_daily_indexing(self) -> IndexingLogEntry:
        """Submit sitemap URLs changed within the lookback window."""

        if self._daily_lock.locked():
            raise DailyIndexingInProgressError("Daily indexing is already running")

        async with self._daily_lock:
            started_at = self._now_factory()
            since = started_at - self._lookback
            try:
                requests = await collect_recent_sitemap_urls(
                    self._sitemap_url, since, fetcher=self._fetcher
                )
            except (SitemapFetchError, SitemapParseError) as error:
                _LOGGER.exception(
                    "daily_indexing_sitemap_failed",
                    extra={"sitemap_url": self._sitemap_url},
                )
                return await self._log_failed_run(
                    started_at, f"Sitemap {self._sitemap_url}: {error}"
                )

            _LOGGER.info(
                "daily_indexing_urls_collected",
                extra={"count": len(requests), "since": since.isoformat()},
            )
            return await self._submitter.submit(
                requests, IndexingRunType.DAILY_INDEXING
            )

    async def run_manual_indexing(
        self,
        urls: Sequence[str],
        action: SubmissionAction = SubmissionAction.URL_UPDATED,
    ) -> IndexingLogEntry:
        return await self._submitter.submit(
            list(urls), IndexingRunType.MANUAL_INDEXING, action=action
        )

    async def run_auto_indexing(
        self,
        urls: Sequence[str],
        action: SubmissionAction = SubmissionAction.URL_UPDATED,
    ) -> IndexingLogEntry:
        """Submit URLs whose content just changed on the site."""

        return await self._submitter.submit(
            list(urls), IndexingRunType.AUTO_INDEXING, action=action
        )

    async def _log_failed_run(
        self, started_at: datetime, message: str
    ) -> IndexingLogEntry:
        entry = IndexingLogEntry(
            timestamp=started_at,
            run_type=IndexingRunType.DAILY_INDEXING,
            success=False,
            quota_remaining=await self._ledger.remaining(),
            errors=[message],
            duration=round(
                (self._now_factory() - started_at).total_seconds() * 1000, 2
            ),
        )
        await self._indexing_logger.append(entry)
        return entry


def set_indexing_job_service(service: IndexingJobService | None) -> None:
    global _job_service
    _job_service = service


def _require_job_service() -> IndexingJobService:
    if _job_service is None:
        raise RuntimeError("Indexing job service is not initialized")
    return _job_service


async def run_scheduled_daily_indexing_job() -> None:
    try:
        await _require_job_service().run_daily_indexing()
    except DailyIndexingInProgressError:
        _LOGGER.warning(
            "scheduler_job_overlap_skipped",
            extra={"job_id": DAILY_INDEXING_JOB_ID},
        )


__all__ = [
    "DAILY_INDEXING_JOB_ID",
    "DailyIndexingInProgressError",
    "IndexingJobService",
    "collect_recent_sitemap_urls",
    "run_scheduled_daily_indexing_job",
    "set_indexing_job_service",
]
