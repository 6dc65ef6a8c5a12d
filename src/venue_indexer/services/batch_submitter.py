"""Priority-aware, quota-limited batch submission of URLs for indexing."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from venue_indexer.config import Settings
from venue_indexer.schemas.indexing import (
    TIER_ORDER,
    IndexingLogEntry,
    IndexingRequest,
    IndexingRunType,
    PriorityTier,
    SubmissionAction,
)
from venue_indexer.services.indexing_logger import IndexingLogger
from venue_indexer.services.priority_classifier import PriorityClassifier
from venue_indexer.services.quota_ledger import DailyQuotaExceededError, QuotaLedger
from venue_indexer.services.submission_client import (
    SubmissionClient,
    SubmissionOutcome,
)

DEFAULT_MAX_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY_SECONDS = 0.1

SleepCallable = Callable[[float], Awaitable[None]]

_LOGGER = logging.getLogger("venue_indexer.submitter")


@dataclass(slots=True, frozen=True)
class _AdmittedURL:
    url: str
    tier: PriorityTier


@dataclass(slots=True)
class _RunProgress:
    attempted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    accepted_by_tier: dict[PriorityTier, int] = field(
        default_factory=lambda: {tier: 0 for tier in TIER_ORDER}
    )
    stopped_early: bool = False

    @property
    def successful(self) -> int:
        return sum(self.accepted_by_tier.values())


class IndexingBatchSubmitter:
    """Allocate today's quota across priority tiers and submit in paced batches.

    HIGH URLs are admitted first (bounded by the HIGH reserve), then MEDIUM
    (bounded by the MEDIUM reserve), then LOW takes whatever global budget
    is left. URLs that do not fit are deferred silently. Only submissions the
    remote service accepted are committed to the ledger.
    """

    def __init__(
        self,
        *,
        ledger: QuotaLedger,
        client: SubmissionClient,
        indexing_logger: IndexingLogger,
        classifier: PriorityClassifier | None = None,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        concurrency: int = 1,
        default_tier: PriorityTier = PriorityTier.LOW,
        sleep: SleepCallable = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be greater than zero")
        if batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds must be zero or greater")
        if concurrency <= 0:
            raise ValueError("concurrency must be greater than zero")

        self._ledger = ledger
        self._client = client
        self._indexing_logger = indexing_logger
        self._classifier = classifier or PriorityClassifier()
        self._max_batch_size = max_batch_size
        self._batch_delay_seconds = batch_delay_seconds
        self._concurrency = concurrency
        self._default_tier = default_tier
        self._sleep = sleep
        self._monotonic = monotonic

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        ledger: QuotaLedger,
        client: SubmissionClient,
        indexing_logger: IndexingLogger,
        classifier: PriorityClassifier | None = None,
    ) -> IndexingBatchSubmitter:
        return cls(
            ledger=ledger,
            client=client,
            indexing_logger=indexing_logger,
            classifier=classifier,
            max_batch_size=settings.MAX_BATCH_SIZE,
            batch_delay_seconds=settings.batch_request_delay_seconds,
            concurrency=settings.SUBMISSION_CONCURRENCY,
        )

    @property
    def classifier(self) -> PriorityClassifier:
        return self._classifier

    def classify(self, url: str) -> PriorityTier:
        return self._classifier.classify_or_default(url, self._default_tier)

    async def should_index(self, url: str) -> bool:
        """Return whether a single URL is worth submitting right now.

        HIGH URLs always qualify. MEDIUM URLs need more quota left than the
        HIGH reserve, LOW URLs more than the MEDIUM reserve.
        """

        tier = self.classify(url)
        if tier is PriorityTier.HIGH:
            return True

        remaining = await self._ledger.remaining()
        protected_tier = (
            PriorityTier.HIGH if tier is PriorityTier.MEDIUM else PriorityTier.MEDIUM
        )
        return remaining > (self._ledger.tier_reserve(protected_tier) or 0)

    async def submit(
        self,
        requests: Sequence[IndexingRequest | str],
        run_type: IndexingRunType = IndexingRunType.MANUAL_INDEXING,
        *,
        action: SubmissionAction = SubmissionAction.URL_UPDATED,
        timeout_seconds: float | None = None,
    ) -> IndexingLogEntry:
        """Submit URLs within today's quota and log one entry for the run."""

        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")

        started_at = datetime.now(UTC)
        started_clock = self._monotonic()
        deadline = (
            None if timeout_seconds is None else started_clock + timeout_seconds
        )

        urls_by_tier = self._group_by_tier(requests)
        day = self._ledger.today()

        if not any(urls_by_tier.values()):
            entry = self._build_entry(
                started_at=started_at,
                started_clock=started_clock,
                run_type=run_type,
                progress=_RunProgress(),
                quota_used=0,
                quota_remaining=await self._ledger.remaining(day),
                success=True,
            )
            await self._indexing_logger.append(entry)
            return entry

        remaining = await self._ledger.remaining(day)
        if remaining <= 0:
            return await self._quota_exhausted_entry(
                day=day,
                run_type=run_type,
                started_at=started_at,
                started_clock=started_clock,
            )

        granted_by_tier, admitted = await self._allocate(day, urls_by_tier)
        progress = _RunProgress()
        committed = 0
        try:
            await self._run_batches(
                admitted,
                action=action,
                progress=progress,
                deadline=deadline,
                run_type=run_type,
            )
        finally:
            committed = await self._settle_quota(
                day=day,
                granted_by_tier=granted_by_tier,
                progress=progress,
            )

        entry = self._build_entry(
            started_at=started_at,
            started_clock=started_clock,
            run_type=run_type,
            progress=progress,
            quota_used=committed,
            quota_remaining=await self._ledger.remaining(day),
            success=not progress.errors,
        )
        _LOGGER.info(
            "indexing_run_completed",
            extra={
                "run_type": run_type.value,
                "admitted": len(admitted),
                "deferred": sum(len(urls) for urls in urls_by_tier.values())
                - len(admitted),
                "successful": entry.successful,
                "failed": entry.failed,
                "quota_remaining": entry.quota_remaining,
                "stopped_early": progress.stopped_early,
            },
        )
        await self._indexing_logger.append(entry)
        return entry

    def _group_by_tier(
        self, requests: Sequence[IndexingRequest | str]
    ) -> dict[PriorityTier, list[str]]:
        urls_by_tier: dict[PriorityTier, list[str]] = {tier: [] for tier in TIER_ORDER}
        seen: set[str] = set()
        for request in requests:
            url = request.url if isinstance(request, IndexingRequest) else request
            url = url.strip()
            if not url or url in seen:
                continue
            seen.add(url)
            urls_by_tier[self.classify(url)].append(url)
        return urls_by_tier

    async def _allocate(
        self,
        day: date,
        urls_by_tier: dict[PriorityTier, list[str]],
    ) -> tuple[dict[PriorityTier, int], list[_AdmittedURL]]:
        granted_by_tier: dict[PriorityTier, int] = {}
        admitted: list[_AdmittedURL] = []
        for tier in TIER_ORDER:
            tier_urls = urls_by_tier[tier]
            if not tier_urls:
                granted_by_tier[tier] = 0
                continue

            granted = await self._ledger.reserve(day, tier, len(tier_urls))
            granted_by_tier[tier] = granted
            admitted.extend(
                _AdmittedURL(url=url, tier=tier) for url in tier_urls[:granted]
            )
            if granted < len(tier_urls):
                _LOGGER.info(
                    "indexing_urls_deferred",
                    extra={
                        "tier": tier.value,
                        "requested": len(tier_urls),
                        "granted": granted,
                    },
                )
        return granted_by_tier, admitted

    async def _run_batches(
        self,
        admitted: list[_AdmittedURL],
        *,
        action: SubmissionAction,
        progress: _RunProgress,
        deadline: float | None,
        run_type: IndexingRunType,
    ) -> None:
        batches = [
            admitted[index : index + self._max_batch_size]
            for index in range(0, len(admitted), self._max_batch_size)
        ]
        for batch_index, batch in enumerate(batches):
            if batch_index > 0:
                delay = self._batch_delay_seconds
                if deadline is not None:
                    delay = min(delay, max(deadline - self._monotonic(), 0.0))
                if delay > 0:
                    await self._sleep(delay)

            if deadline is not None and self._monotonic() >= deadline:
                progress.stopped_early = True
                _LOGGER.warning(
                    "indexing_run_deadline_reached",
                    extra={
                        "run_type": run_type.value,
                        "batch_index": batch_index,
                        "not_attempted": len(admitted) - len(progress.attempted),
                    },
                )
                return

            fatal = await self._submit_batch(batch, action=action, progress=progress)
            _LOGGER.info(
                "indexing_batch_submitted",
                extra={
                    "run_type": run_type.value,
                    "batch_index": batch_index,
                    "batch_size": len(batch),
                    "attempted_total": len(progress.attempted),
                    "successful_total": progress.successful,
                },
            )
            if fatal:
                progress.stopped_early = True
                return

    async def _submit_batch(
        self,
        batch: list[_AdmittedURL],
        *,
        action: SubmissionAction,
        progress: _RunProgress,
    ) -> bool:
        if self._concurrency == 1:
            for item in batch:
                outcome = await self._submit_single(item.url, action)
                self._record_outcome(item, outcome, progress)
                if outcome.fatal:
                    return True
            return False

        semaphore = asyncio.Semaphore(self._concurrency)

        async def submit_limited(item: _AdmittedURL) -> SubmissionOutcome:
            async with semaphore:
                return await self._submit_single(item.url, action)

        outcomes = await asyncio.gather(*[submit_limited(item) for item in batch])
        for item, outcome in zip(batch, outcomes):
            self._record_outcome(item, outcome, progress)
        return any(outcome.fatal for outcome in outcomes)

    async def _submit_single(
        self, url: str, action: SubmissionAction
    ) -> SubmissionOutcome:
        try:
            return await self._client.submit_one(url, action)
        except Exception as error:
            _LOGGER.exception(
                "indexing_submission_transport_error", extra={"url": url}
            )
            return SubmissionOutcome(
                url=url,
                accepted=False,
                reason=str(error) or error.__class__.__name__,
                error_code="TRANSPORT_ERROR",
                fatal=True,
            )

    @staticmethod
    def _record_outcome(
        item: _AdmittedURL,
        outcome: SubmissionOutcome,
        progress: _RunProgress,
    ) -> None:
        progress.attempted.append(item.url)
        if outcome.accepted:
            progress.accepted_by_tier[item.tier] += 1
            return

        reason = outcome.reason or outcome.error_code or "submission rejected"
        progress.errors.append(f"{item.url}: {reason}")

    async def _settle_quota(
        self,
        *,
        day: date,
        granted_by_tier: dict[PriorityTier, int],
        progress: _RunProgress,
    ) -> int:
        committed = 0
        for tier in TIER_ORDER:
            granted = granted_by_tier.get(tier, 0)
            accepted = min(progress.accepted_by_tier[tier], granted)
            recorded = accepted
            if accepted > 0:
                try:
                    await self._ledger.commit(day, accepted, tier)
                except DailyQuotaExceededError as error:
                    recorded = await self._ledger.commit_available(
                        day, accepted, tier
                    )
                    _LOGGER.error(
                        "indexing_quota_commit_saturated",
                        extra={
                            "tier": tier.value,
                            "accepted": accepted,
                            "recorded": recorded,
                        },
                    )
                    progress.errors.append(
                        f"Quota commit failed: {error}; recorded {recorded} of "
                        f"{accepted} accepted {tier.value} submissions"
                    )
                committed += recorded

            unused = granted - recorded
            if unused > 0:
                await self._ledger.release(day, tier, unused)
        return committed

    async def _quota_exhausted_entry(
        self,
        *,
        day: date,
        run_type: IndexingRunType,
        started_at: datetime,
        started_clock: float,
    ) -> IndexingLogEntry:
        snapshot = await self._ledger.snapshot(day)
        message = (
            f"Daily quota limit of {snapshot.limit} requests reached. "
            f"Try again after {snapshot.resets_at.isoformat()}"
        )
        _LOGGER.warning(
            "indexing_quota_exhausted",
            extra={"run_type": run_type.value, "day": day.isoformat()},
        )
        progress = _RunProgress(errors=[message])
        entry = self._build_entry(
            started_at=started_at,
            started_clock=started_clock,
            run_type=run_type,
            progress=progress,
            quota_used=0,
            quota_remaining=0,
            success=False,
        )
        await self._indexing_logger.append(entry)
        return entry

    def _build_entry(
        self,
        *,
        started_at: datetime,
        started_clock: float,
        run_type: IndexingRunType,
        progress: _RunProgress,
        quota_used: int,
        quota_remaining: int,
        success: bool,
    ) -> IndexingLogEntry:
        attempted = len(progress.attempted)
        return IndexingLogEntry(
            timestamp=started_at,
            run_type=run_type,
            success=success,
            total_processed=attempted,
            successful=progress.successful,
            failed=attempted - progress.successful,
            quota_used=quota_used,
            quota_remaining=quota_remaining,
            errors=list(progress.errors),
            indexed_urls=list(progress.attempted),
            duration=round((self._monotonic() - started_clock) * 1000, 2),
        )


__all__ = [
    "DEFAULT_BATCH_DELAY_SECONDS",
    "DEFAULT_MAX_BATCH_SIZE",
    "IndexingBatchSubmitter",
]
