"""Indexing domain types and their serialized forms."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, tzinfo
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PriorityTier(str, Enum):
    """Priority tiers competing for the daily indexing quota."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


TIER_ORDER: tuple[PriorityTier, ...] = (
    PriorityTier.HIGH,
    PriorityTier.MEDIUM,
    PriorityTier.LOW,
)


class IndexingRunType(str, Enum):
    """Label describing what triggered a submission run."""

    DAILY_INDEXING = "DAILY_INDEXING"
    MANUAL_INDEXING = "MANUAL_INDEXING"
    AUTO_INDEXING = "AUTO_INDEXING"


class SubmissionAction(str, Enum):
    """Notification type sent to the Indexing API."""

    URL_UPDATED = "URL_UPDATED"
    URL_DELETED = "URL_DELETED"


@dataclass(slots=True, frozen=True)
class IndexingRequest:
    """A URL that needs (re)submission."""

    url: str
    discovered_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class IndexingLogEntry(_CamelModel):
    """Outcome of one submission run, persisted as one log line."""

    timestamp: datetime
    run_type: IndexingRunType = Field(alias="type")
    success: bool
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    quota_used: int = 0
    quota_remaining: int = 0
    errors: list[str] = Field(default_factory=list)
    indexed_urls: list[str] = Field(default_factory=list)
    duration: float | None = None

    @field_validator(
        "total_processed",
        "successful",
        "failed",
        "quota_used",
        "quota_remaining",
        mode="before",
    )
    @classmethod
    def missing_count_as_zero(cls, value: object) -> object:
        return 0 if value is None else value

    def local_date(self, zone: tzinfo = UTC) -> date:
        """Calendar date of the run in ``zone``; naive timestamps are UTC."""

        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return timestamp.astimezone(zone).date()

    def to_log_line(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class DailyIndexingStats(_CamelModel):
    """Same-day aggregation over indexing log entries."""

    day: date = Field(alias="date")
    total_indexed: int
    total_failed: int
    quota_used: int
    entries: list[IndexingLogEntry]


__all__ = [
    "DailyIndexingStats",
    "IndexingLogEntry",
    "IndexingRequest",
    "IndexingRunType",
    "PriorityTier",
    "SubmissionAction",
    "TIER_ORDER",
]
