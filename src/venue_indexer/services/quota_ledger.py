"""Daily indexing quota ledger with per-tier reservations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

from venue_indexer.config import get_settings
from venue_indexer.schemas.indexing import TIER_ORDER, PriorityTier
from venue_indexer.services.quota_store import QuotaState, QuotaStore

MAX_RESERVE_ATTEMPTS = 5

_LOGGER = logging.getLogger("venue_indexer.quota")


class QuotaSettings(Protocol):
    """Settings contract used by the quota ledger."""

    DAILY_QUOTA_LIMIT: int
    HIGH_PRIORITY_RESERVE: int
    MEDIUM_PRIORITY_RESERVE: int
    QUOTA_TIMEZONE: str


@dataclass
class QuotaLedgerSettings:
    """Concrete settings payload for ledger overrides and tests."""

    DAILY_QUOTA_LIMIT: int = 200
    HIGH_PRIORITY_RESERVE: int = 50
    MEDIUM_PRIORITY_RESERVE: int = 100
    QUOTA_TIMEZONE: str = "UTC"


class DailyQuotaExceededError(RuntimeError):
    """Raised when a commit would push usage past the daily limit."""


@dataclass(slots=True, frozen=True)
class QuotaSnapshot:
    """Point-in-time view of a day's quota."""

    day: date
    limit: int
    used: int
    remaining: int
    reserved: int
    tier_used: dict[str, int]
    resets_at: datetime


class QuotaLedger:
    """Track daily submissions against a fixed cap and tier sub-budgets.

    ``reserve`` records grants in the store without touching usage; a grant
    stays reserved until ``commit`` converts it into usage or ``release``
    gives it back. Reservations live in the store, so ledgers in other
    processes see them. Each ledger also remembers what it reserved itself,
    which bounds what it may commit or release.
    """

    def __init__(
        self,
        *,
        store: QuotaStore,
        settings: QuotaSettings | None = None,
        today_factory: Callable[[], date] | None = None,
    ) -> None:
        resolved_settings = settings or get_settings()
        reserved_total = (
            resolved_settings.HIGH_PRIORITY_RESERVE
            + resolved_settings.MEDIUM_PRIORITY_RESERVE
        )
        if reserved_total > resolved_settings.DAILY_QUOTA_LIMIT:
            raise ValueError("Priority reserves cannot exceed the daily quota limit")

        self._store = store
        self._settings = resolved_settings
        self._timezone = ZoneInfo(resolved_settings.QUOTA_TIMEZONE)
        self._today_factory = today_factory or self._default_today
        self._locks: dict[date, asyncio.Lock] = {}
        self._held: dict[tuple[date, PriorityTier], int] = {}

    @property
    def limit(self) -> int:
        return self._settings.DAILY_QUOTA_LIMIT

    @property
    def timezone(self) -> ZoneInfo:
        return self._timezone

    def today(self) -> date:
        return self._today_factory()

    def tier_reserve(self, tier: PriorityTier) -> int | None:
        """Return the tier's daily sub-budget; LOW has none of its own."""

        if tier is PriorityTier.HIGH:
            return self._settings.HIGH_PRIORITY_RESERVE
        if tier is PriorityTier.MEDIUM:
            return self._settings.MEDIUM_PRIORITY_RESERVE
        return None

    async def remaining(self, day: date | None = None) -> int:
        """Return ``limit - used`` for the day, initialising it when absent."""

        target_day = day or self.today()
        async with self._lock_for(target_day):
            state = await self._load_or_initialize(target_day)
            return state.remaining

    async def reserve(
        self,
        day: date | None,
        tier: PriorityTier,
        amount: int,
    ) -> int:
        """Reserve up to ``amount`` units for a tier and return the grant.

        The grant is computed from the stored state and applied with a
        conditional update; when another writer changed the row in between,
        the grant is recomputed.
        """

        if amount < 0:
            raise ValueError("amount must be zero or greater")

        target_day = day or self.today()
        granted = 0
        async with self._lock_for(target_day):
            for _ in range(MAX_RESERVE_ATTEMPTS):
                state = await self._load_or_initialize(target_day)
                grantable = min(amount, self._grantable(state, tier))
                if grantable <= 0:
                    break
                if await self._store.try_reserve(
                    target_day, tier, grantable, tier_cap=self.tier_reserve(tier)
                ):
                    granted = grantable
                    key = (target_day, tier)
                    self._held[key] = self._held.get(key, 0) + granted
                    break
            else:
                _LOGGER.warning(
                    "quota_reserve_contended",
                    extra={"day": target_day.isoformat(), "tier": tier.value},
                )

        _LOGGER.debug(
            "quota_reserved",
            extra={
                "day": target_day.isoformat(),
                "tier": tier.value,
                "requested": amount,
                "granted": granted,
            },
        )
        return granted

    async def commit(
        self,
        day: date | None,
        amount: int,
        tier: PriorityTier | None = None,
    ) -> QuotaState:
        """Record ``amount`` submissions as used for the day."""

        if amount < 0:
            raise ValueError("amount must be zero or greater")

        target_day = day or self.today()
        async with self._lock_for(target_day):
            held = 0
            if tier is not None:
                held = self._held.get((target_day, tier), 0)
                if amount > held:
                    raise ValueError(
                        f"Cannot commit {amount} {tier.value} submissions with only "
                        f"{held} reserved"
                    )

            state = await self._load_or_initialize(target_day)
            if amount == 0:
                return state

            updated_state = await self._store.try_commit(target_day, amount, tier)
            if updated_state is None:
                current = await self._load_or_initialize(target_day)
                raise DailyQuotaExceededError(
                    f"Committing {amount} submissions would exceed the daily quota "
                    f"for {target_day.isoformat()} ({current.used}/{current.limit} "
                    "used)"
                )
            if tier is not None:
                self._set_held((target_day, tier), held - amount)

        _LOGGER.info(
            "quota_committed",
            extra={
                "day": target_day.isoformat(),
                "tier": tier.value if tier is not None else None,
                "amount": amount,
                "used": updated_state.used,
                "limit": updated_state.limit,
            },
        )
        return updated_state

    async def commit_available(
        self,
        day: date | None,
        amount: int,
        tier: PriorityTier | None = None,
    ) -> int:
        """Commit as much of ``amount`` as the day's limit still allows.

        Returns the number of submissions recorded. Used when work that
        already consumed remote quota must be accounted for even though the
        day filled up in the meantime.
        """

        target_day = day or self.today()
        for _ in range(MAX_RESERVE_ATTEMPTS):
            partial = min(amount, await self.remaining(target_day))
            if partial <= 0:
                return 0
            try:
                await self.commit(target_day, partial, tier)
            except DailyQuotaExceededError:
                continue
            return partial
        return 0

    async def release(
        self,
        day: date | None,
        tier: PriorityTier,
        amount: int,
    ) -> int:
        """Return unused reserved units to the pool and report how many."""

        if amount < 0:
            raise ValueError("amount must be zero or greater")

        target_day = day or self.today()
        key = (target_day, tier)
        async with self._lock_for(target_day):
            held = self._held.get(key, 0)
            released = min(amount, held)
            if released > 0:
                if not await self._store.release(target_day, tier, released):
                    _LOGGER.warning(
                        "quota_release_mismatch",
                        extra={
                            "day": target_day.isoformat(),
                            "tier": tier.value,
                            "amount": released,
                        },
                    )
                self._set_held(key, held - released)
        return released

    async def can_grant(self, tier: PriorityTier, day: date | None = None) -> bool:
        """Return whether at least one unit could currently be reserved."""

        target_day = day or self.today()
        async with self._lock_for(target_day):
            state = await self._load_or_initialize(target_day)
            return self._grantable(state, tier) > 0

    async def snapshot(self, day: date | None = None) -> QuotaSnapshot:
        target_day = day or self.today()
        async with self._lock_for(target_day):
            state = await self._load_or_initialize(target_day)
            return QuotaSnapshot(
                day=target_day,
                limit=state.limit,
                used=state.used,
                remaining=state.remaining,
                reserved=state.reserved,
                tier_used={tier.value: state.tier_used(tier) for tier in TIER_ORDER},
                resets_at=self._next_reset(target_day),
            )

    def _grantable(self, state: QuotaState, tier: PriorityTier) -> int:
        available = max(state.limit - state.used - state.reserved, 0)

        tier_reserve = self.tier_reserve(tier)
        if tier_reserve is None:
            return available

        tier_available = (
            tier_reserve - state.tier_used(tier) - state.tier_reserved(tier)
        )
        return max(min(available, tier_available), 0)

    async def _load_or_initialize(self, day: date) -> QuotaState:
        state = await self._store.load(day)
        if state is not None:
            return state

        state = await self._store.create(QuotaState(day=day, limit=self.limit))
        _LOGGER.info(
            "quota_day_initialized",
            extra={"day": day.isoformat(), "limit": state.limit},
        )
        return state

    def _set_held(self, key: tuple[date, PriorityTier], amount: int) -> None:
        if amount > 0:
            self._held[key] = amount
            return
        self._held.pop(key, None)

    def _lock_for(self, day: date) -> asyncio.Lock:
        lock = self._locks.get(day)
        if lock is None:
            self._prune_locks()
            lock = asyncio.Lock()
            self._locks[day] = lock
        return lock

    def _prune_locks(self) -> None:
        today = self.today()
        stale_days = [
            day
            for day, lock in self._locks.items()
            if day < today and not lock.locked()
        ]
        for day in stale_days:
            del self._locks[day]

    def _next_reset(self, day: date) -> datetime:
        next_midnight = datetime.combine(
            day + timedelta(days=1), time.min, tzinfo=self._timezone
        )
        return next_midnight.astimezone(UTC)

    def _default_today(self) -> date:
        return datetime.now(self._timezone).date()


__all__ = [
    "DailyQuotaExceededError",
    "MAX_RESERVE_ATTEMPTS",
    "QuotaLedger",
    "QuotaLedgerSettings",
    "QuotaSettings",
    "QuotaSnapshot",
]
