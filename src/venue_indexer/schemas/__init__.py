"""Schema exports for indexing types and API serialization."""

from venue_indexer import __version__
from venue_indexer.schemas.indexing import (
    TIER_ORDER,
    DailyIndexingStats,
    IndexingLogEntry,
    IndexingRequest,
    IndexingRunType,
    PriorityTier,
    SubmissionAction,
)

__all__ = [
    "__version__",
    "DailyIndexingStats",
    "IndexingLogEntry",
    "IndexingRequest",
    "IndexingRunType",
    "PriorityTier",
    "SubmissionAction",
    "TIER_ORDER",
]
