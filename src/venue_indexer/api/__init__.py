"""API package exports."""

from venue_indexer import __version__
from venue_indexer.api.indexing import router as indexing_router
from venue_indexer.api.scheduler import router as scheduler_router

__all__ = [
    "__version__",
    "indexing_router",
    "scheduler_router",
]
