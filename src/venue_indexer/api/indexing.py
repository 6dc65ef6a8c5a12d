"""Indexing quota, submission and log API routes."""

from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from venue_indexer.api.dependencies import get_app_settings, get_job_service
from venue_indexer.config import Settings, is_google_indexing_enabled
from venue_indexer.schemas.indexing import (
    DailyIndexingStats,
    IndexingLogEntry,
    IndexingRunType,
    PriorityTier,
    SubmissionAction,
)
from venue_indexer.services.indexing_jobs import IndexingJobService
from venue_indexer.services.indexing_logger import DAILY_STATS_WINDOW

MAX_SUBMIT_URLS = 1000

router = APIRouter(prefix="/api/indexing", tags=["indexing"])


class _CamelSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuotaStatusResponse(_CamelSchema):
    """Today's quota position."""

    day: date = Field(alias="date")
    limit: int
    used: int
    remaining: int
    reserved: int
    tier_used: dict[str, int]
    resets_at: datetime
    indexing_enabled: bool


class SubmitIndexingRequest(_CamelSchema):
    """URLs to submit on demand."""

    urls: list[str] = Field(max_length=MAX_SUBMIT_URLS)
    action: SubmissionAction = SubmissionAction.URL_UPDATED
    run_type: IndexingRunType = IndexingRunType.MANUAL_INDEXING

    @field_validator("run_type")
    @classmethod
    def validate_run_type(cls, value: IndexingRunType) -> IndexingRunType:
        if value is IndexingRunType.DAILY_INDEXING:
            raise ValueError("DAILY_INDEXING runs are started by the scheduler")
        return value


class ClassifyRequest(_CamelSchema):
    urls: list[str] = Field(min_length=1, max_length=MAX_SUBMIT_URLS)


class ClassifiedURL(_CamelSchema):
    url: str
    tier: PriorityTier | None


class ClassifyResponse(_CamelSchema):
    results: list[ClassifiedURL]


@router.get(
    "/quota", response_model=QuotaStatusResponse, status_code=status.HTTP_200_OK
)
async def get_quota_status(
    job_service: IndexingJobService = Depends(get_job_service),
    settings: Settings = Depends(get_app_settings),
) -> QuotaStatusResponse:
    snapshot = await job_service.ledger.snapshot()
    return QuotaStatusResponse(
        day=snapshot.day,
        limit=snapshot.limit,
        used=snapshot.used,
        remaining=snapshot.remaining,
        reserved=snapshot.reserved,
        tier_used=snapshot.tier_used,
        resets_at=snapshot.resets_at,
        indexing_enabled=is_google_indexing_enabled(settings),
    )


@router.post(
    "/submit", response_model=IndexingLogEntry, status_code=status.HTTP_200_OK
)
async def submit_urls(
    payload: SubmitIndexingRequest,
    job_service: IndexingJobService = Depends(get_job_service),
) -> IndexingLogEntry:
    if payload.run_type is IndexingRunType.AUTO_INDEXING:
        return await job_service.run_auto_indexing(payload.urls, payload.action)
    return await job_service.run_manual_indexing(payload.urls, payload.action)


@router.post(
    "/classify", response_model=ClassifyResponse, status_code=status.HTTP_200_OK
)
async def classify_urls(
    payload: ClassifyRequest,
    job_service: IndexingJobService = Depends(get_job_service),
) -> ClassifyResponse:
    classifier = job_service.submitter.classifier
    return ClassifyResponse(
        results=[
            ClassifiedURL(url=url, tier=classifier.classify(url))
            for url in payload.urls
        ]
    )


@router.get(
    "/logs", response_model=list[IndexingLogEntry], status_code=status.HTTP_200_OK
)
async def list_recent_logs(
    limit: int = Query(default=50, ge=1, le=DAILY_STATS_WINDOW),
    job_service: IndexingJobService = Depends(get_job_service),
) -> list[IndexingLogEntry]:
    return await job_service.indexing_logger.recent(limit)


@router.get(
    "/stats", response_model=DailyIndexingStats, status_code=status.HTTP_200_OK
)
async def get_daily_stats(
    day: date | None = Query(default=None, alias="date"),
    job_service: IndexingJobService = Depends(get_job_service),
) -> DailyIndexingStats:
    return await job_service.indexing_logger.daily_stats(day)


__all__ = [
    "ClassifyRequest",
    "QuotaStatusResponse",
    "SubmitIndexingRequest",
    "router",
]
