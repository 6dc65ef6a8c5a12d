"""Service layer for quota accounting, classification and submission."""

from venue_indexer import __version__
from venue_indexer.services.batch_submitter import IndexingBatchSubmitter
from venue_indexer.services.google_indexing_client import (
    GoogleIndexingClient,
    build_submission_client,
)
from venue_indexer.services.indexing_jobs import (
    DAILY_INDEXING_JOB_ID,
    DailyIndexingInProgressError,
    IndexingJobService,
    collect_recent_sitemap_urls,
)
from venue_indexer.services.indexing_logger import (
    FileLogSink,
    InMemoryLogSink,
    IndexingLogger,
    LogSink,
)
from venue_indexer.services.priority_classifier import PriorityClassifier
from venue_indexer.services.quota_ledger import (
    DailyQuotaExceededError,
    QuotaLedger,
    QuotaLedgerSettings,
    QuotaSnapshot,
)
from venue_indexer.services.quota_store import (
    InMemoryQuotaStore,
    QuotaState,
    QuotaStore,
    SQLQuotaStore,
)
from venue_indexer.services.scheduler import SchedulerJobState, SchedulerService
from venue_indexer.services.sitemap_fetcher import (
    SitemapFetchError,
    SitemapFetchHTTPError,
    SitemapFetchResult,
    fetch_sitemap,
)
from venue_indexer.services.sitemap_url_parser import (
    SitemapParseError,
    SitemapURLRecord,
    parse_sitemap_index,
    parse_sitemap_urls_stream,
)
from venue_indexer.services.submission_client import (
    DisabledSubmissionClient,
    SubmissionClient,
    SubmissionOutcome,
)

__all__ = [
    "__version__",
    "DAILY_INDEXING_JOB_ID",
    "DailyIndexingInProgressError",
    "DailyQuotaExceededError",
    "DisabledSubmissionClient",
    "FileLogSink",
    "GoogleIndexingClient",
    "InMemoryLogSink",
    "InMemoryQuotaStore",
    "IndexingBatchSubmitter",
    "IndexingJobService",
    "IndexingLogger",
    "LogSink",
    "PriorityClassifier",
    "QuotaLedger",
    "QuotaLedgerSettings",
    "QuotaSnapshot",
    "QuotaState",
    "QuotaStore",
    "SQLQuotaStore",
    "SchedulerJobState",
    "SchedulerService",
    "SitemapFetchError",
    "SitemapFetchHTTPError",
    "SitemapFetchResult",
    "SitemapParseError",
    "SitemapURLRecord",
    "SubmissionClient",
    "SubmissionOutcome",
    "build_submission_client",
    "collect_recent_sitemap_urls",
    "fetch_sitemap",
    "parse_sitemap_index",
    "parse_sitemap_urls_stream",
]
