"""Structured logging configuration and request logging middleware.

Application loggers emit short event names (``daily_indexing_urls_collected``)
and attach context through ``extra``. Both output formats carry those extra
fields: JSON as top-level keys, text as trailing ``key=value`` pairs.
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import UTC, datetime
from time import perf_counter
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from venue_indexer.config import Settings

REDACTED = "[REDACTED]"
SENSITIVE_FIELD_MARKERS = (
    "authorization",
    "credential",
    "password",
    "private_key",
    "secret",
    "service_account",
    "token",
)
TEXT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
NOISY_LOGGERS = ("apscheduler", "googleapiclient.discovery_cache", "httpx")

_RESERVED_RECORD_KEYS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELD_MARKERS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if _is_sensitive(str(key)) else _redact(item)
            for key, item in value.items()
        }
    return value


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra`` fields attached to a record."""

    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_KEYS and not key.startswith("_")
    }


class SensitiveDataFilter(logging.Filter):
    """Mask extra fields and dict payloads whose keys look like secrets."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = _redact(record.args)
        for key, value in record_extras(record).items():
            setattr(record, key, REDACTED if _is_sensitive(key) else _redact(value))
        return True


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line with extra fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_extras(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable lines followed by the record's extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = record_extras(record)
        if not extras:
            return line

        pairs = " ".join(
            f"{key}={json.dumps(value, default=str)}"
            for key, value in sorted(extras.items())
        )
        head, newline, trace = line.partition("\n")
        return f"{head} | {pairs}{newline}{trace}"


def build_logging_config(settings: Settings) -> dict[str, Any]:
    """Translate logging settings into a ``dictConfig`` mapping."""

    handler: dict[str, Any] = {
        "formatter": settings.LOG_FORMAT,
        "filters": ["redact"],
    }
    if settings.LOG_FILE is None:
        handler["class"] = "logging.StreamHandler"
    else:
        settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handler.update(
            {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": str(settings.LOG_FILE),
                "maxBytes": settings.LOG_FILE_MAX_BYTES,
                "backupCount": settings.LOG_FILE_BACKUP_COUNT,
                "encoding": "utf-8",
            }
        )

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"redact": {"()": SensitiveDataFilter}},
        "formatters": {
            "json": {"()": JsonLogFormatter},
            "text": {
                "()": KeyValueFormatter,
                "fmt": TEXT_LOG_FORMAT,
                "datefmt": TEXT_DATE_FORMAT,
            },
        },
        "handlers": {"default": handler},
        "loggers": {name: {"level": "WARNING"} for name in NOISY_LOGGERS},
        "root": {"level": settings.LOG_LEVEL, "handlers": ["default"]},
    }


def setup_logging(settings: Settings) -> None:
    logging.config.dictConfig(build_logging_config(settings))
    logging.captureWarnings(True)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its status and duration."""

    _logger = logging.getLogger("venue_indexer.request")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        started_at = perf_counter()
        context = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }
        try:
            response = await call_next(request)
        except Exception:
            self._logger.exception(
                "request_failed",
                extra={**context, "duration_ms": _elapsed_ms(started_at)},
            )
            raise

        self._logger.info(
            "request_completed",
            extra={
                **context,
                "status_code": response.status_code,
                "duration_ms": _elapsed_ms(started_at),
            },
        )
        return response


def _elapsed_ms(started_at: float) -> float:
    return round((perf_counter() - started_at) * 1000, 2)


__all__ = [
    "JsonLogFormatter",
    "KeyValueFormatter",
    "RequestLoggingMiddleware",
    "SensitiveDataFilter",
    "build_logging_config",
    "record_extras",
    "setup_logging",
]
