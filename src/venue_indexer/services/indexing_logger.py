"""Append-only JSON-lines log of indexing runs with daily aggregation."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from collections import deque
from collections.abc import Sequence
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Literal, Protocol
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from venue_indexer.schemas.indexing import DailyIndexingStats, IndexingLogEntry

DEFAULT_RECENT_LIMIT = 50
DAILY_STATS_WINDOW = 1000
MESSAGE_ENTRY_TYPE = "LOG"
_READ_CHUNK_BYTES = 64 * 1024

_LOGGER = logging.getLogger("venue_indexer.indexing_log")

MessageLevel = Literal["INFO", "WARN", "ERROR"]


class LogSink(Protocol):
    """Line-oriented append-only store with suffix reads."""

    def append_line(self, line: str) -> None: ...

    def tail_lines(self, limit: int) -> list[str]: ...


class InMemoryLogSink:
    """Keeps log lines in a list; used by tests and dry runs."""

    def __init__(self, lines: Sequence[str] | None = None) -> None:
        self._lines: list[str] = list(lines or [])
        self._lock = threading.Lock()

    @property
    def lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def append_line(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def tail_lines(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        with self._lock:
            return list(self._lines[-limit:])


class FileLogSink:
    """Append lines to a file with one ``write`` per line on an O_APPEND fd."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append_line(self, line: str) -> None:
        payload = (line.rstrip("\n") + "\n").encode("utf-8")
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            descriptor = os.open(
                self._path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644
            )
            try:
                written = os.write(descriptor, payload)
            finally:
                os.close(descriptor)

        if written != len(payload):
            raise OSError(
                f"Short write to {self._path}: {written} of {len(payload)} bytes"
            )

    def tail_lines(self, limit: int) -> list[str]:
        if limit <= 0 or not self._path.exists():
            return []

        with self._path.open("rb") as log_file:
            log_file.seek(0, os.SEEK_END)
            position = log_file.tell()
            buffer = b""
            while position > 0 and buffer.count(b"\n") <= limit:
                read_size = min(_READ_CHUNK_BYTES, position)
                position -= read_size
                log_file.seek(position)
                buffer = log_file.read(read_size) + buffer

        lines = [
            line
            for line in buffer.decode("utf-8", errors="replace").splitlines()
            if line.strip()
        ]
        if position > 0 and lines:
            # first line may be cut mid-record
            lines = lines[1:]
        return lines[-limit:]


def _parse_entry(line: str) -> IndexingLogEntry | None:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return None

    if not isinstance(payload, dict) or payload.get("type") == MESSAGE_ENTRY_TYPE:
        return None

    try:
        return IndexingLogEntry.model_validate(payload)
    except ValidationError:
        return None


class IndexingLogger:
    """Records indexing run outcomes and reads them back for monitoring."""

    def __init__(self, sink: LogSink, *, timezone: str = "UTC") -> None:
        self._sink = sink
        self._timezone = ZoneInfo(timezone)

    @classmethod
    def for_file(cls, path: str | Path, *, timezone: str = "UTC") -> IndexingLogger:
        return cls(FileLogSink(path), timezone=timezone)

    async def append(self, entry: IndexingLogEntry) -> bool:
        """Append one entry; failures are logged and reported as ``False``."""

        try:
            await asyncio.to_thread(self._sink.append_line, entry.to_log_line())
        except Exception:
            _LOGGER.exception(
                "indexing_log_write_failed",
                extra={"run_type": entry.run_type.value},
            )
            return False

        _LOGGER.info(
            "indexing_log_written",
            extra={
                "run_type": entry.run_type.value,
                "successful": entry.successful,
                "failed": entry.failed,
            },
        )
        return True

    async def log_message(self, message: str, level: MessageLevel = "INFO") -> bool:
        line = json.dumps(
            {
                "timestamp": datetime.now(UTC).isoformat(),
                "type": MESSAGE_ENTRY_TYPE,
                "level": level,
                "message": message,
            }
        )
        try:
            await asyncio.to_thread(self._sink.append_line, line)
        except Exception:
            _LOGGER.exception("indexing_log_write_failed", extra={"level": level})
            return False
        return True

    async def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[IndexingLogEntry]:
        """Return up to ``limit`` most recent entries, oldest first.

        Malformed lines and plain message lines are skipped. The sink is
        re-read with a wider window until enough entries are found or the
        log is exhausted.
        """

        if limit <= 0:
            return []

        window = limit
        while True:
            try:
                lines = await asyncio.to_thread(self._sink.tail_lines, window)
            except Exception:
                _LOGGER.exception("indexing_log_read_failed")
                return []

            entries: deque[IndexingLogEntry] = deque(maxlen=limit)
            for line in lines:
                entry = _parse_entry(line)
                if entry is not None:
                    entries.append(entry)

            if len(entries) >= limit or len(lines) < window:
                return list(entries)
            window *= 2

    async def daily_stats(self, day: date | None = None) -> DailyIndexingStats:
        """Sum successful, failed and quota figures for entries on ``day``.

        Days are calendar dates in the logger's timezone, the same zone the
        quota ledger uses for its day key.
        """

        target_day = day or datetime.now(self._timezone).date()
        entries = [
            entry
            for entry in await self.recent(DAILY_STATS_WINDOW)
            if entry.local_date(self._timezone) == target_day
        ]
        return DailyIndexingStats(
            day=target_day,
            total_indexed=sum(entry.successful for entry in entries),
            total_failed=sum(entry.failed for entry in entries),
            quota_used=sum(entry.quota_used for entry in entries),
            entries=entries,
        )


__all__ = [
    "DAILY_STATS_WINDOW",
    "FileLogSink",
    "InMemoryLogSink",
    "IndexingLogger",
    "LogSink",
]
