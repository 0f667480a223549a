"""Read-only position views for owners: progress and distribution history."""

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.yd_common.datetime_utils import utc_now
from src.yd_common.enums import PositionStatus
from src.yd_common.errors import PositionAccessDeniedError, PositionNotFoundError
from src.yd_distribution.application.schemas import (
    DistributionHistoryResponse,
    DistributionRecordItem,
    PositionProgressResponse,
)
from src.yd_distribution.application.scanner import EligibilityScanner
from src.yd_distribution.domain.models import PositionView
from src.yd_distribution.domain.repository import DistributionRecordStoreProtocol
from src.yd_distribution.domain.time_window import period_boundary
from src.yd_distribution.infrastructure.persistence import DistributionRecordStore


class PositionQueryService:
    def __init__(
        self,
        scanner: EligibilityScanner | None = None,
        records: DistributionRecordStoreProtocol | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._scanner = scanner or EligibilityScanner()
        self._records: DistributionRecordStoreProtocol = records or DistributionRecordStore()
        self._clock = clock

    async def _load(
        self, db: AsyncSession, position_id: str, user_id: str, is_admin: bool
    ) -> PositionView:
        view = await self._scanner.get_view(db, position_id, self._clock())
        if view is None:
            raise PositionNotFoundError(position_id)
        if not is_admin and view.owner_id != user_id:
            raise PositionAccessDeniedError(position_id)
        return view

    async def get_progress(
        self, db: AsyncSession, position_id: str, user_id: str, is_admin: bool = False
    ) -> PositionProgressResponse:
        view = await self._load(db, position_id, user_id, is_admin)
        row = view.row
        total = row.total_periods or 0
        elapsed = view.window.elapsed_periods
        next_due: datetime | None = None
        if row.status == PositionStatus.ACTIVE and total and row.already_distributed < total:
            next_due = period_boundary(
                row.start_time, view.period_length, row.already_distributed + 1
            )
        return PositionProgressResponse.from_view(
            view,
            periods_remaining=max(total - elapsed, 0),
            progress_percentage=round(elapsed * 100 / total, 2) if total else 0.0,
            next_profit_due=next_due,
        )

    async def list_distributions(
        self, db: AsyncSession, position_id: str, user_id: str, is_admin: bool = False
    ) -> DistributionHistoryResponse:
        view = await self._load(db, position_id, user_id, is_admin)
        records = await self._records.list_for(db, position_id)
        items = [DistributionRecordItem.from_record(r) for r in records]
        return DistributionHistoryResponse(
            position_id=position_id,
            total_profit_accrued=str(view.row.total_profit_accrued),
            items=items,
        )
