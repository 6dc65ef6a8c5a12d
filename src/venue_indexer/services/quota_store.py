"""Date-keyed storage backends for daily quota state.

Every mutating operation is a single conditional update: it either applies
in full or reports that its precondition no longer holds. Several ledgers,
in one process or many, can therefore share one store without granting
more than the day's limit.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Protocol, cast

from sqlalchemy import CursorResult, Update, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from venue_indexer.models import QuotaUsage
from venue_indexer.schemas.indexing import PriorityTier

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_TIER_FIELDS: dict[PriorityTier, tuple[str, str]] = {
    PriorityTier.HIGH: ("high_used", "high_reserved"),
    PriorityTier.MEDIUM: ("medium_used", "medium_reserved"),
    PriorityTier.LOW: ("low_used", "low_reserved"),
}


@dataclass(slots=True, frozen=True)
class QuotaState:
    """Committed and reserved submissions for one calendar day."""

    day: date
    limit: int
    used: int = 0
    high_used: int = 0
    medium_used: int = 0
    low_used: int = 0
    high_reserved: int = 0
    medium_reserved: int = 0
    low_reserved: int = 0

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    @property
    def reserved(self) -> int:
        return self.high_reserved + self.medium_reserved + self.low_reserved

    def tier_used(self, tier: PriorityTier) -> int:
        return cast(int, getattr(self, _TIER_FIELDS[tier][0]))

    def tier_reserved(self, tier: PriorityTier) -> int:
        return cast(int, getattr(self, _TIER_FIELDS[tier][1]))

    def can_reserve(
        self, tier: PriorityTier, amount: int, *, tier_cap: int | None
    ) -> bool:
        if self.used + self.reserved + amount > self.limit:
            return False
        if tier_cap is None:
            return True
        return self.tier_used(tier) + self.tier_reserved(tier) + amount <= tier_cap

    def can_commit(self, amount: int, tier: PriorityTier | None) -> bool:
        if self.used + amount > self.limit:
            return False
        return tier is None or self.tier_reserved(tier) >= amount

    def with_reserved(self, tier: PriorityTier, delta: int) -> QuotaState:
        reserved_field = _TIER_FIELDS[tier][1]
        return replace(self, **{reserved_field: self.tier_reserved(tier) + delta})

    def with_committed(self, amount: int, tier: PriorityTier | None) -> QuotaState:
        if tier is None:
            return replace(self, used=self.used + amount)

        used_field, reserved_field = _TIER_FIELDS[tier]
        return replace(
            self,
            used=self.used + amount,
            **{
                used_field: self.tier_used(tier) + amount,
                reserved_field: self.tier_reserved(tier) - amount,
            },
        )


class QuotaStore(Protocol):
    """Key-value store holding one QuotaState per calendar day."""

    async def load(self, day: date) -> QuotaState | None: ...

    async def create(self, state: QuotaState) -> QuotaState: ...

    async def try_reserve(
        self, day: date, tier: PriorityTier, amount: int, *, tier_cap: int | None
    ) -> bool: ...

    async def try_commit(
        self, day: date, amount: int, tier: PriorityTier | None
    ) -> QuotaState | None: ...

    async def release(self, day: date, tier: PriorityTier, amount: int) -> bool: ...


class InMemoryQuotaStore:
    """Process-local quota store, mainly for tests and one-off runs."""

    def __init__(self) -> None:
        self._states: dict[date, QuotaState] = {}

    async def load(self, day: date) -> QuotaState | None:
        return self._states.get(day)

    async def create(self, state: QuotaState) -> QuotaState:
        return self._states.setdefault(state.day, state)

    async def try_reserve(
        self, day: date, tier: PriorityTier, amount: int, *, tier_cap: int | None
    ) -> bool:
        state = self._states.get(day)
        if state is None or not state.can_reserve(tier, amount, tier_cap=tier_cap):
            return False
        self._states[day] = state.with_reserved(tier, amount)
        return True

    async def try_commit(
        self, day: date, amount: int, tier: PriorityTier | None
    ) -> QuotaState | None:
        state = self._states.get(day)
        if state is None or not state.can_commit(amount, tier):
            return None
        self._states[day] = state.with_committed(amount, tier)
        return self._states[day]

    async def release(self, day: date, tier: PriorityTier, amount: int) -> bool:
        state = self._states.get(day)
        if state is None or state.tier_reserved(tier) < amount:
            return False
        self._states[day] = state.with_reserved(tier, -amount)
        return True


def _to_state(usage: QuotaUsage) -> QuotaState:
    return QuotaState(
        day=usage.date,
        limit=usage.quota_limit,
        used=usage.used,
        high_used=usage.high_used,
        medium_used=usage.medium_used,
        low_used=usage.low_used,
        high_reserved=usage.high_reserved,
        medium_reserved=usage.medium_reserved,
        low_reserved=usage.low_reserved,
    )


class SQLQuotaStore:
    """Quota store persisted in the ``quota_usages`` table.

    Reservations and commits are guarded ``UPDATE ... WHERE`` statements, so
    the database decides atomically whether the row still has room.
    """

    def __init__(self, *, session_factory: SessionScopeFactory | None = None) -> None:
        if session_factory is None:
            from venue_indexer.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory

    async def load(self, day: date) -> QuotaState | None:
        async with self._session_factory() as session:
            usage = await self._get_usage_row(session=session, day=day)
            return None if usage is None else _to_state(usage)

    async def create(self, state: QuotaState) -> QuotaState:
        try:
            async with self._session_factory() as session:
                usage = await self._get_usage_row(session=session, day=state.day)
                if usage is not None:
                    return _to_state(usage)

                session.add(
                    QuotaUsage(
                        date=state.day,
                        quota_limit=state.limit,
                        used=state.used,
                        high_used=state.high_used,
                        medium_used=state.medium_used,
                        low_used=state.low_used,
                        high_reserved=state.high_reserved,
                        medium_reserved=state.medium_reserved,
                        low_reserved=state.low_reserved,
                    )
                )
                await session.flush()
        except IntegrityError:
            # another writer created the row first; its row wins
            pass

        created = await self.load(state.day)
        if created is None:
            raise RuntimeError(f"Quota row for {state.day.isoformat()} was not created")
        return created

    async def try_reserve(
        self, day: date, tier: PriorityTier, amount: int, *, tier_cap: int | None
    ) -> bool:
        used_field, reserved_field = _TIER_FIELDS[tier]
        tier_used = getattr(QuotaUsage, used_field)
        tier_reserved = getattr(QuotaUsage, reserved_field)
        reserved_total = (
            QuotaUsage.high_reserved
            + QuotaUsage.medium_reserved
            + QuotaUsage.low_reserved
        )

        conditions = [
            QuotaUsage.date == day,
            QuotaUsage.used + reserved_total + amount <= QuotaUsage.quota_limit,
        ]
        if tier_cap is not None:
            conditions.append(tier_used + tier_reserved + amount <= tier_cap)

        statement = (
            update(QuotaUsage)
            .where(*conditions)
            .values({reserved_field: tier_reserved + amount})
        )
        async with self._session_factory() as session:
            return await self._update_one(session=session, statement=statement)

    async def try_commit(
        self, day: date, amount: int, tier: PriorityTier | None
    ) -> QuotaState | None:
        conditions = [
            QuotaUsage.date == day,
            QuotaUsage.used + amount <= QuotaUsage.quota_limit,
        ]
        values: dict[str, Any] = {"used": QuotaUsage.used + amount}
        if tier is not None:
            used_field, reserved_field = _TIER_FIELDS[tier]
            tier_used = getattr(QuotaUsage, used_field)
            tier_reserved = getattr(QuotaUsage, reserved_field)
            conditions.append(tier_reserved >= amount)
            values[used_field] = tier_used + amount
            values[reserved_field] = tier_reserved - amount

        statement = update(QuotaUsage).where(*conditions).values(values)
        async with self._session_factory() as session:
            if not await self._update_one(session=session, statement=statement):
                return None
            usage = await self._get_usage_row(session=session, day=day)
            return None if usage is None else _to_state(usage)

    async def release(self, day: date, tier: PriorityTier, amount: int) -> bool:
        reserved_field = _TIER_FIELDS[tier][1]
        tier_reserved = getattr(QuotaUsage, reserved_field)
        statement = (
            update(QuotaUsage)
            .where(QuotaUsage.date == day, tier_reserved >= amount)
            .values({reserved_field: tier_reserved - amount})
        )
        async with self._session_factory() as session:
            return await self._update_one(session=session, statement=statement)

    @staticmethod
    async def _update_one(*, session: AsyncSession, statement: Update) -> bool:
        result = await session.execute(
            statement.execution_options(synchronize_session=False)
        )
        return cast(CursorResult[Any], result).rowcount == 1

    @staticmethod
    async def _get_usage_row(*, session: AsyncSession, day: date) -> QuotaUsage | None:
        result = await session.execute(
            select(QuotaUsage)
            .where(QuotaUsage.date == day)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


__all__ = [
    "InMemoryQuotaStore",
    "QuotaState",
    "QuotaStore",
    "SQLQuotaStore",
]
