"""CompletionHandler — closes a position whose duration has lapsed.

  1. Re-run the executor so the final period exists (a position can cross its
     boundary in the same run that would pay its last period).
  2. Refuse to complete unless every period is recorded.
  3. One transaction: ACTIVE → COMPLETED (guarded by `WHERE status='ACTIVE'`),
     principal credited, PRINCIPAL_RETURN audit row. A concurrent completer
     that loses the guard rolls back and reports completed=False.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.yd_common.enums import AuditEntryType
from src.yd_common.errors import (
    IncompleteDistributionError,
    PlanMetadataError,
    PositionNotExpiredError,
)
from src.yd_distribution.application.executor import DistributionExecutor
from src.yd_distribution.domain.models import CompletionResult, PositionView
from src.yd_distribution.domain.repository import (
    AuditStoreProtocol,
    BalanceStoreProtocol,
    DistributionRecordStoreProtocol,
    PositionStoreProtocol,
)
from src.yd_distribution.domain.time_window import compute_window
from src.yd_distribution.infrastructure.persistence import (
    AuditStore,
    BalanceStore,
    DistributionRecordStore,
    PositionStore,
)

logger = logging.getLogger(__name__)


class CompletionHandler:
    def __init__(
        self,
        executor: DistributionExecutor | None = None,
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
        self._executor = executor or DistributionExecutor(
            self._positions, self._records, self._balances, self._audit
        )
        self._timeout_ms = (
            statement_timeout_ms
            if statement_timeout_ms is not None
            else settings.DISTRIBUTION_STATEMENT_TIMEOUT_MS
        )

    async def complete(
        self, db: AsyncSession, view: PositionView, now: datetime
    ) -> CompletionResult:
        row = view.row
        if not view.has_plan_metadata or row.total_periods is None:
            raise PlanMetadataError(row.id, "missing rate_per_period or total_periods")
        if not view.is_expired:
            raise PositionNotExpiredError(row.id, view.raw_elapsed_periods, row.total_periods)

        try:
            # Step 1: make sure every period (the final one included) is paid.
            # Recount first: the view may be stale if another run committed since the scan.
            distributed = await self._records.count_for(db, row.id)
            window = compute_window(
                row.start_time, view.period_length, now, row.total_periods, distributed
            )
            execution = await self._executor.execute(db, view, window)
            result = CompletionResult(
                periods_distributed=execution.periods_distributed,
                amount_distributed=execution.total_amount,
            )

            # Step 2: never complete with a gap
            distributed = await self._records.count_for(db, row.id)
            if distributed < row.total_periods:
                raise IncompleteDistributionError(row.id, distributed, row.total_periods)

            # Step 3: transition + principal return, atomically
            await self._positions.apply_statement_timeout(db, self._timeout_ms)
            transitioned = await self._positions.mark_completed(db, row.id, now)
            if not transitioned:
                await db.rollback()
                logger.info("Position %s already completed by another run", row.id)
                return result
            balance_after = await self._balances.increment(
                db, row.owner_id, row.principal_amount
            )
            await self._audit.append(
                db,
                row.owner_id,
                AuditEntryType.PRINCIPAL_RETURN,
                row.principal_amount,
                balance_after,
                row.id,
                f"Position {row.id} completed - principal returned",
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        result.completed = True
        result.principal_returned = row.principal_amount
        logger.info(
            "Completed position %s: returned principal %s to owner %s",
            row.id,
            row.principal_amount,
            row.owner_id,
        )
        return result
