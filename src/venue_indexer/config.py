"""Application settings loaded from environment variables."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GOOGLE_INDEXING_MAX_BATCH_SIZE = 100


@dataclass(slots=True, frozen=True)
class PriorityPattern:
    """Path-prefix rule used to classify URLs into priority tiers.

    ``min_path_segments`` lets two tiers share a prefix: venue pages live at
    ``/locations/{country}/{state}/{city}/{venue}`` while city and state pages
    use the same prefix with fewer segments.
    """

    prefix: str
    min_path_segments: int = 0


URL_PRIORITY_PATTERNS: dict[str, tuple[PriorityPattern, ...]] = {
    "HIGH": (PriorityPattern("/locations/", min_path_segments=5),),
    "MEDIUM": (
        PriorityPattern("/locations/"),
        PriorityPattern("/themes/"),
        PriorityPattern("/blog/"),
    ),
    "LOW": (
        PriorityPattern("/browse"),
        PriorityPattern("/contact"),
        PriorityPattern("/privacy"),
        PriorityPattern("/terms"),
    ),
}


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str = "sqlite+aiosqlite:///./data/venue_indexer.sqlite"
    HOST: str = "0.0.0.0"
    PORT: int = Field(default=8000, ge=1, le=65535)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "text"
    LOG_FILE: Path | None = None
    LOG_FILE_MAX_BYTES: int = Field(default=10_485_760, ge=1)
    LOG_FILE_BACKUP_COUNT: int = Field(default=5, ge=1)
    SITE_BASE_URL: str = "https://escaperoomsfinder.com"
    GOOGLE_INDEXING_ENABLED: bool = True
    GOOGLE_SERVICE_ACCOUNT_FILE: Path | None = None
    DAILY_QUOTA_LIMIT: int = Field(default=200, ge=0)
    HIGH_PRIORITY_RESERVE: int = Field(default=50, ge=0)
    MEDIUM_PRIORITY_RESERVE: int = Field(default=100, ge=0)
    BATCH_REQUEST_DELAY_MS: int = Field(default=100, ge=0)
    MAX_BATCH_SIZE: int = Field(default=50, ge=1, le=GOOGLE_INDEXING_MAX_BATCH_SIZE)
    SUBMISSION_CONCURRENCY: int = Field(default=1, ge=1)
    QUOTA_TIMEZONE: str = "UTC"
    INDEXING_LOG_FILE: Path = Path("logs/indexing.log")
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_JOBSTORE_URL: str = "sqlite:///./scheduler-jobs.sqlite"
    DAILY_INDEXING_CRON_HOUR: str = "3"
    DAILY_INDEXING_CRON_MINUTE: str = "0"
    DAILY_INDEXING_LOOKBACK_HOURS: int = Field(default=24, ge=1)
    SITEMAP_URL: str | None = None
    OUTBOUND_HTTP_USER_AGENT: str = "VenueIndexerBot"

    @field_validator(
        "LOG_FILE", "GOOGLE_SERVICE_ACCOUNT_FILE", "SITEMAP_URL", mode="before"
    )
    @classmethod
    def parse_optional_value(cls, value: object) -> object:
        if value in (None, ""):
            return None
        return value

    @field_validator("QUOTA_TIMEZONE")
    @classmethod
    def validate_quota_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as error:
            raise ValueError(f"Unknown timezone '{value}'") from error
        return value

    @model_validator(mode="after")
    def validate_priority_reserves(self) -> Settings:
        reserved = self.HIGH_PRIORITY_RESERVE + self.MEDIUM_PRIORITY_RESERVE
        if reserved > self.DAILY_QUOTA_LIMIT:
            raise ValueError(
                f"HIGH_PRIORITY_RESERVE + MEDIUM_PRIORITY_RESERVE ({reserved}) "
                f"cannot exceed DAILY_QUOTA_LIMIT ({self.DAILY_QUOTA_LIMIT})"
            )
        return self

    @property
    def sitemap_url(self) -> str:
        if self.SITEMAP_URL:
            return self.SITEMAP_URL
        return f"{self.SITE_BASE_URL.rstrip('/')}/sitemap.xml"

    @property
    def batch_request_delay_seconds(self) -> float:
        return self.BATCH_REQUEST_DELAY_MS / 1000


def is_google_indexing_enabled(settings: Settings) -> bool:
    """Return whether remote submissions should be attempted at all."""

    return (
        settings.GOOGLE_INDEXING_ENABLED
        and settings.GOOGLE_SERVICE_ACCOUNT_FILE is not None
    )


def validate_indexing_config(settings: Settings) -> list[str]:
    """Return human-readable problems that would prevent remote submissions."""

    problems: list[str] = []
    if not settings.GOOGLE_INDEXING_ENABLED:
        problems.append("GOOGLE_INDEXING_ENABLED is false")
    if settings.GOOGLE_SERVICE_ACCOUNT_FILE is None:
        problems.append("GOOGLE_SERVICE_ACCOUNT_FILE is not set")
    elif not settings.GOOGLE_SERVICE_ACCOUNT_FILE.expanduser().is_file():
        problems.append(
            "GOOGLE_SERVICE_ACCOUNT_FILE does not exist: "
            f"{settings.GOOGLE_SERVICE_ACCOUNT_FILE}"
        )
    return problems


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
