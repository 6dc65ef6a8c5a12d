"""Utilities for shared application concerns."""

from venue_indexer import __version__
from venue_indexer.utils.logging import (
    JsonLogFormatter,
    KeyValueFormatter,
    RequestLoggingMiddleware,
    SensitiveDataFilter,
    build_logging_config,
    setup_logging,
)

__all__ = [
    "__version__",
    "JsonLogFormatter",
    "KeyValueFormatter",
    "RequestLoggingMiddleware",
    "SensitiveDataFilter",
    "build_logging_config",
    "setup_logging",
]
