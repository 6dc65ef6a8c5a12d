"""ORM model exports."""

from venue_indexer import __version__
from venue_indexer.models.base import Base
from venue_indexer.models.quota_usage import QuotaUsage

__all__ = ["__version__", "Base", "QuotaUsage"]
