"""DistributionExecutor — credits a position's owed periods, one transaction each.

Per period, in a single transaction:
  1. INSERT the distribution record (UNIQUE position_id+period_index)
  2. balance += period_amount (atomic increment)
  3. append a PROFIT audit transaction
  4. position.total_profit_accrued += period_amount
then COMMIT. If step 1 inserts nothing, another invocation already paid that
period: roll back and move on. Periods are credited oldest-missing-first.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.yd_common.enums import AuditEntryType
from src.yd_common.errors import PlanMetadataError
from src.yd_common.money import calculate_period_amount
from src.yd_distribution.domain.models import ExecutionResult, PeriodWindow, PositionView
from src.yd_distribution.domain.repository import (
    AuditStoreProtocol,
    BalanceStoreProtocol,
    DistributionRecordStoreProtocol,
    PositionStoreProtocol,
)
from src.yd_distribution.domain.time_window import period_boundary
from src.yd_distribution.infrastructure.persistence import (
    AuditStore,
    BalanceStore,
    DistributionRecordStore,
    PositionStore,
)

logger = logging.getLogger(__name__)


class DistributionExecutor:
    def __init__(
        self,
        positions: PositionStoreProtocol | None = None,
        records: DistributionRecordStoreProtocol | None = None,
        balances: BalanceStoreProtocol | None = None,
        audit: AuditStoreProtocol | None = None,
        statement_timeout_ms: int | None = None,
    ) -> None:
        self._positions: PositionStoreProtocol = positions or PositionStore()
        self._records: DistributionRecordStoreProtocol = records or DistributionRecordStore()
        self._balances: BalanceStoreProtocol = balances or BalanceStore()
        self._audit: AuditStoreProtocol = audit or AuditStore()
        self._timeout_ms = (
            statement_timeout_ms
            if statement_timeout_ms is not None
            else settings.DISTRIBUTION_STATEMENT_TIMEOUT_MS
        )

    async def execute(
        self, db: AsyncSession, view: PositionView, window: PeriodWindow | None = None
    ) -> ExecutionResult:
        """Credit `window.missing_periods` periods starting at `window.next_period_index`.

        Raises PlanMetadataError before touching storage if the plan is unusable.
        Any storage error rolls back the in-flight period and propagates;
        periods committed before it stay committed.
        """
        row = view.row
        if not view.has_plan_metadata or row.rate_per_period is None:
            raise PlanMetadataError(row.id, "missing rate_per_period or total_periods")
        if row.principal_amount <= 0:
            raise PlanMetadataError(row.id, f"non-positive principal {row.principal_amount}")

        window = window or view.window
        result = ExecutionResult()
        if window.missing_periods <= 0:
            return result

        period_amount = calculate_period_amount(row.principal_amount, row.rate_per_period)

        for offset in range(window.missing_periods):
            period_index = window.next_period_index + offset
            credited_at = period_boundary(row.start_time, view.period_length, period_index)
            try:
                await self._positions.apply_statement_timeout(db, self._timeout_ms)
                inserted = await self._records.insert_if_absent(
                    db, row.id, period_index, period_amount, credited_at
                )
                if not inserted:
                    await db.rollback()
                    result.periods_skipped += 1
                    logger.debug(
                        "Period already distributed: position=%s period=%d",
                        row.id,
                        period_index,
                    )
                    continue
                balance_after = await self._balances.increment(db, row.owner_id, period_amount)
                await self._audit.append(
                    db,
                    row.owner_id,
                    AuditEntryType.PROFIT,
                    period_amount,
                    balance_after,
                    row.id,
                    f"{row.period_kind.value.capitalize()} profit, period "
                    f"{period_index}/{row.total_periods} of position {row.id}",
                )
                await self._positions.add_profit_accrued(db, row.id, period_amount)
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            result.periods_distributed += 1
            result.total_amount += period_amount

        if result.periods_distributed:
            logger.info(
                "Distributed %d period(s) totalling %s to position %s (owner %s)",
                result.periods_distributed,
                result.total_amount,
                row.id,
                row.owner_id,
            )
        return result
