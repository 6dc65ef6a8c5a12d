"""Tests for the append-only indexing run log."""

from __future__ import annotations

import json
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest

from venue_indexer.schemas.indexing import IndexingLogEntry, IndexingRunType
from venue_indexer.services.indexing_logger import (
    FileLogSink,
    InMemoryLogSink,
    IndexingLogger,
)

DAY = date(2024, 5, 1)


def _entry(
    *,
    timestamp: datetime | None = None,
    successful: int = 1,
    failed: int = 0,
    run_type: IndexingRunType = IndexingRunType.MANUAL_INDEXING,
) -> IndexingLogEntry:
    return IndexingLogEntry(
        timestamp=timestamp or datetime(2024, 5, 1, 12, tzinfo=UTC),
        run_type=run_type,
        success=failed == 0,
        total_processed=successful + failed,
        successful=successful,
        failed=failed,
        quota_used=successful,
        quota_remaining=200 - successful,
        errors=[
            f"https://escaperoomsfinder.com/x-{i}: rejected" for i in range(failed)
        ],
        indexed_urls=[
            f"https://escaperoomsfinder.com/x-{i}" for i in range(successful + failed)
        ],
        duration=12.5,
    )


@pytest.mark.asyncio
async def test_append_then_recent_returns_the_same_entry() -> None:
    logger = IndexingLogger(InMemoryLogSink())
    entry = _entry(successful=3, failed=1)

    assert await logger.append(entry) is True
    assert await logger.recent(1) == [entry]


@pytest.mark.asyncio
async def test_log_lines_use_camel_case_keys() -> None:
    sink = InMemoryLogSink()
    await IndexingLogger(sink).append(_entry())

    payload = json.loads(sink.lines[0])

    assert payload["type"] == "MANUAL_INDEXING"
    assert payload["totalProcessed"] == 1
    assert payload["quotaRemaining"] == 199
    assert payload["indexedUrls"] == ["https://escaperoomsfinder.com/x-0"]
    assert "run_type" not in payload


@pytest.mark.asyncio
async def test_recent_returns_oldest_first_and_honours_limit() -> None:
    logger = IndexingLogger(InMemoryLogSink())
    entries = [_entry(successful=count) for count in range(1, 6)]
    for entry in entries:
        await logger.append(entry)

    assert await logger.recent(3) == entries[2:]
    assert await logger.recent(50) == entries
    assert await logger.recent(0) == []


@pytest.mark.asyncio
async def test_recent_skips_malformed_and_message_lines() -> None:
    sink = InMemoryLogSink()
    logger = IndexingLogger(sink)
    first = _entry(successful=1)
    second = _entry(successful=2)

    await logger.append(first)
    sink.append_line("{not json")
    sink.append_line('{"timestamp": "2024-05-01T00:00:00Z"}')
    await logger.log_message("daily run started")
    sink.append_line(json.dumps(["a", "list"]))
    await logger.append(second)

    assert await logger.recent(2) == [first, second]


@pytest.mark.asyncio
async def test_missing_counts_are_read_as_zero() -> None:
    sink = InMemoryLogSink(
        [
            json.dumps(
                {
                    "timestamp": "2024-05-01T08:00:00Z",
                    "type": "DAILY_INDEXING",
                    "success": True,
                    "successful": None,
                }
            )
        ]
    )

    (entry,) = await IndexingLogger(sink).recent(1)

    assert entry.successful == 0
    assert entry.failed == 0
    assert entry.quota_used == 0
    assert entry.errors == []


@pytest.mark.asyncio
async def test_log_message_writes_typed_line() -> None:
    sink = InMemoryLogSink()

    assert await IndexingLogger(sink).log_message("sitemap unavailable", "ERROR")

    payload = json.loads(sink.lines[0])
    assert payload["type"] == "LOG"
    assert payload["level"] == "ERROR"
    assert payload["message"] == "sitemap unavailable"


@pytest.mark.asyncio
async def test_daily_stats_only_counts_entries_on_the_requested_day() -> None:
    logger = IndexingLogger(InMemoryLogSink())
    on_day = datetime(2024, 5, 1, 23, 59, tzinfo=UTC)
    next_day = on_day + timedelta(minutes=2)
    await logger.append(_entry(timestamp=on_day, successful=4, failed=1))
    await logger.append(_entry(timestamp=on_day, successful=6))
    await logger.append(_entry(timestamp=next_day, successful=9, failed=2))

    stats = await logger.daily_stats(DAY)
    following = await logger.daily_stats(DAY + timedelta(days=1))

    assert stats.day == DAY
    assert stats.total_indexed == 10
    assert stats.total_failed == 1
    assert stats.quota_used == 10
    assert len(stats.entries) == 2
    assert following.total_indexed == 9
    assert following.total_failed == 2
    assert len(following.entries) == 1


@pytest.mark.asyncio
async def test_daily_stats_uses_the_configured_timezone_for_day_boundaries() -> None:
    sink = InMemoryLogSink()
    logger = IndexingLogger(sink, timezone="America/Los_Angeles")
    # 20:00 on May 1 in Los Angeles
    evening = datetime(2024, 5, 2, 3, tzinfo=UTC)
    # 23:00 on April 30 in Los Angeles
    previous_night = datetime(2024, 5, 1, 6, tzinfo=UTC)
    await logger.append(_entry(timestamp=evening, successful=7))
    await logger.append(_entry(timestamp=previous_night, successful=3))

    stats = await logger.daily_stats(DAY)
    utc_stats = await IndexingLogger(sink).daily_stats(DAY)

    assert stats.total_indexed == 7
    assert stats.quota_used == 7
    assert [entry.timestamp for entry in stats.entries] == [evening]
    assert utc_stats.total_indexed == 3


@pytest.mark.asyncio
async def test_daily_stats_for_empty_log_is_zero() -> None:
    stats = await IndexingLogger(InMemoryLogSink()).daily_stats(DAY)

    assert stats.total_indexed == 0
    assert stats.total_failed == 0
    assert stats.entries == []
    assert stats.model_dump(by_alias=True)["date"] == DAY


@pytest.mark.asyncio
async def test_file_sink_round_trip_and_tail(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "indexing.log"
    logger = IndexingLogger.for_file(log_path)
    entries = [_entry(successful=count) for count in range(1, 8)]
    for entry in entries:
        await logger.append(entry)

    assert log_path.read_text(encoding="utf-8").count("\n") == 7
    assert await logger.recent(3) == entries[4:]
    assert await logger.recent(100) == entries


def test_file_sink_tail_reads_across_chunk_boundaries(tmp_path: Path) -> None:
    sink = FileLogSink(tmp_path / "indexing.log")
    lines = [json.dumps({"n": index, "pad": "x" * 2000}) for index in range(100)]
    for line in lines:
        sink.append_line(line)

    assert sink.tail_lines(60) == lines[-60:]
    assert sink.tail_lines(1000) == lines


def test_file_sink_tail_of_missing_file_is_empty(tmp_path: Path) -> None:
    assert FileLogSink(tmp_path / "missing.log").tail_lines(10) == []


@pytest.mark.asyncio
async def test_append_failure_returns_false(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("", encoding="utf-8")
    logger = IndexingLogger.for_file(blocker / "indexing.log")

    assert await logger.append(_entry()) is False
    assert await logger.recent(5) == []
