"""EligibilityScanner — finds positions needing attention, read-only.

Two modes:
  * due        — what the scheduled trigger credits: ACTIVE, owes at least one
                 period, and still inside its duration.
  * all-active — every ACTIVE position, annotated with its window and
                 `is_expired`. Used by manual catch-up runs and to find
                 positions stuck past their duration after a missed run.

Each PositionView carries rate, total periods and period length, so no
further lookups are needed downstream.
"""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.yd_common.enums import PeriodKind, PositionStatus
from src.yd_distribution.domain.models import (
    PeriodWindow,
    PositionRow,
    PositionView,
    period_length_for,
)
from src.yd_distribution.domain.repository import PositionStoreProtocol
from src.yd_distribution.domain.time_window import compute_window, raw_elapsed_periods
from src.yd_distribution.infrastructure.persistence import PositionStore


def annotate(row: PositionRow, now: datetime) -> PositionView:
    """Attach the time window to a row. Rows without a usable plan get an empty window."""
    period_length = period_length_for(row.period_kind)
    raw_elapsed = raw_elapsed_periods(row.start_time, period_length, now)
    total = row.total_periods
    if total is None or total <= 0:
        window = PeriodWindow(
            missing_periods=0,
            next_period_index=row.already_distributed + 1,
            elapsed_periods=0,
        )
        return PositionView(
            row=row,
            period_length=period_length,
            window=window,
            is_expired=False,
            raw_elapsed_periods=raw_elapsed,
        )
    window = compute_window(
        row.start_time, period_length, now, total, row.already_distributed
    )
    return PositionView(
        row=row,
        period_length=period_length,
        window=window,
        is_expired=raw_elapsed >= total,
        raw_elapsed_periods=raw_elapsed,
    )


class EligibilityScanner:
    def __init__(self, positions: PositionStoreProtocol | None = None) -> None:
        self._positions: PositionStoreProtocol = positions or PositionStore()

    async def scan_due(
        self, db: AsyncSession, kind: PeriodKind, now: datetime
    ) -> list[PositionView]:
        rows = await self._positions.list_due(db, kind, now)
        views = [annotate(row, now) for row in rows if row.status == PositionStatus.ACTIVE]
        # The store pre-filters in SQL; re-check against the same clock so a
        # row that crossed its duration boundary mid-query goes to completion.
        return [
            v for v in views
            if not v.has_plan_metadata
            or (v.window.missing_periods > 0 and not v.is_expired)
        ]

    async def scan_all_active(
        self, db: AsyncSession, kind: PeriodKind, now: datetime
    ) -> list[PositionView]:
        rows = await self._positions.list_all_active(db, kind)
        return [annotate(row, now) for row in rows if row.status == PositionStatus.ACTIVE]

    async def scan_expired(
        self, db: AsyncSession, kind: PeriodKind, now: datetime
    ) -> list[PositionView]:
        views = await self.scan_all_active(db, kind, now)
        return [v for v in views if v.has_plan_metadata and v.is_expired]

    async def get_view(
        self, db: AsyncSession, position_id: str, now: datetime
    ) -> PositionView | None:
        row = await self._positions.get_position(db, position_id)
        return annotate(row, now) if row else None
