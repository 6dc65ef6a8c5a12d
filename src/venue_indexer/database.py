"""Async engine lifecycle for the quota ledger tables."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from venue_indexer.config import get_settings
from venue_indexer.models import Base

SQLITE_BUSY_TIMEOUT_SECONDS = 30
SQLITE_PRAGMAS = ("PRAGMA journal_mode=WAL", "PRAGMA synchronous=NORMAL")

_LOGGER = logging.getLogger("venue_indexer.database")

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _prepare_sqlite_path(url: URL) -> None:
    database = url.database
    if not database or database == ":memory:" or database.startswith("file:"):
        return

    path = Path(database)
    if not path.is_absolute():
        path = Path.cwd() / path
    path.parent.mkdir(parents=True, exist_ok=True)


def build_engine(database_url: str) -> AsyncEngine:
    """Create an engine; SQLite files get their directory and WAL pragmas."""

    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_async_engine(url, pool_pre_ping=True)

    _prepare_sqlite_path(url)
    engine = create_async_engine(
        url,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _apply_pragmas(dbapi_connection: Any, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(pragma)
        cursor.close()

    return engine


def configure_database(database_url: str | None = None) -> AsyncEngine:
    """Bind the module-wide engine, defaulting to ``DATABASE_URL``.

    Calling it again while an engine is bound returns the existing engine.
    """

    global _engine, _session_factory
    if _engine is None:
        _engine = build_engine(database_url or get_settings().DATABASE_URL)
        _session_factory = async_sessionmaker(
            bind=_engine, expire_on_commit=False, autoflush=False
        )
    return _engine


def get_engine() -> AsyncEngine:
    return configure_database()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    configure_database()
    assert _session_factory is not None
    return _session_factory


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""

    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()


async def initialize_database(database_url: str | None = None) -> None:
    """Create the ledger tables if they are missing."""

    engine = configure_database(database_url)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
        await connection.execute(text("SELECT 1"))

    _LOGGER.info(
        "database_initialized",
        extra={
            "backend": engine.url.get_backend_name(),
            "tables": sorted(Base.metadata.tables),
        },
    )


async def close_database() -> None:
    """Dispose the bound engine; the next access binds a fresh one."""

    global _engine, _session_factory
    if _engine is None:
        return

    engine, _engine, _session_factory = _engine, None, None
    await engine.dispose()
    _LOGGER.info("database_closed")


__all__ = [
    "build_engine",
    "close_database",
    "configure_database",
    "get_engine",
    "get_session_factory",
    "initialize_database",
    "session_scope",
]
