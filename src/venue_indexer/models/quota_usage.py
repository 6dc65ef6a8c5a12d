"""Per-day committed and reserved indexing submissions."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Integer, func, text
from sqlalchemy.orm import Mapped, mapped_column

from venue_indexer.models.base import Base

TIER_USAGE_COLUMNS = ("high_used", "medium_used", "low_used")
TIER_RESERVED_COLUMNS = ("high_reserved", "medium_reserved", "low_reserved")


def _usage_counter() -> Mapped[int]:
    return mapped_column(Integer, nullable=False, default=0, server_default=text("0"))


class QuotaUsage(Base):
    """One row per quota day.

    ``used`` counts every committed submission; the tier counters only cover
    commits made against a tier, so their sum never exceeds ``used``. The
    ``*_reserved`` counters hold grants that have not been committed or
    released yet, across every process sharing the table.
    """

    __tablename__ = "quota_usages"
    __table_args__ = (
        CheckConstraint("used >= 0", name="ck_quota_usages_used_non_negative"),
        CheckConstraint(
            f"used >= {' + '.join(TIER_USAGE_COLUMNS)}",
            name="ck_quota_usages_tier_sum",
        ),
        CheckConstraint(
            " AND ".join(f"{column} >= 0" for column in TIER_RESERVED_COLUMNS),
            name="ck_quota_usages_reserved_non_negative",
        ),
    )

    date: Mapped[date] = mapped_column(Date, primary_key=True)
    quota_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    used: Mapped[int] = _usage_counter()
    high_used: Mapped[int] = _usage_counter()
    medium_used: Mapped[int] = _usage_counter()
    low_used: Mapped[int] = _usage_counter()
    high_reserved: Mapped[int] = _usage_counter()
    medium_reserved: Mapped[int] = _usage_counter()
    low_reserved: Mapped[int] = _usage_counter()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


__all__ = ["QuotaUsage", "TIER_RESERVED_COLUMNS", "TIER_USAGE_COLUMNS"]
