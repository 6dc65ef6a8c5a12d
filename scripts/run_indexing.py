"""Run one indexing pass from the command line and print the logged entry."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence

from venue_indexer.config import get_settings
from venue_indexer.database import close_database, initialize_database
from venue_indexer.schemas.indexing import IndexingLogEntry, SubmissionAction
from venue_indexer.services.indexing_jobs import IndexingJobService
from venue_indexer.utils.logging import setup_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "urls",
        nargs="*",
        help="URLs to submit; the daily sitemap run is used when omitted",
    )
    parser.add_argument(
        "--action",
        choices=[action.value for action in SubmissionAction],
        default=SubmissionAction.URL_UPDATED.value,
    )
    parser.add_argument(
        "--quota",
        action="store_true",
        help="print today's quota position and exit",
    )
    return parser.parse_args(argv)


async def _run(arguments: argparse.Namespace) -> None:
    settings = get_settings()
    setup_logging(settings)
    await initialize_database(settings.DATABASE_URL)
    try:
        job_service = IndexingJobService.from_settings(settings)
        if arguments.quota:
            snapshot = await job_service.ledger.snapshot()
            print(
                f"Quota {snapshot.day.isoformat()}: used={snapshot.used} "
                f"remaining={snapshot.remaining} limit={snapshot.limit} "
                f"resets_at={snapshot.resets_at.isoformat()}"
            )
            return

        entry: IndexingLogEntry
        if arguments.urls:
            entry = await job_service.run_manual_indexing(
                arguments.urls, SubmissionAction(arguments.action)
            )
        else:
            entry = await job_service.run_daily_indexing()
        print(entry.model_dump_json(by_alias=True, indent=2))
    finally:
        await close_database()


def main(argv: Sequence[str] | None = None) -> None:
    asyncio.run(_run(_parse_args(argv)))


if __name__ == "__main__":
    main()
