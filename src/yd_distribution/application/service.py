"""DistributionOrchestrator — entry point for the time trigger and admin actions.

Both call paths share the same machinery and the same safety guarantees:
any number of invocations, in any order or concurrently, never pays a period
twice and never completes a position twice. There is no last-run gate.

Per-position failures are rolled back, logged and reported in the summary;
they never abort sibling positions. Only a systemic failure (scan failed, or
every attempted position hit a storage error) propagates to the caller.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.yd_common.datetime_utils import utc_now
from src.yd_common.enums import PeriodKind, PositionStatus
from src.yd_common.errors import (
    AppError,
    PositionNotActiveError,
    PositionNotFoundError,
    StorageUnavailableError,
)
from src.yd_distribution.application.completion import CompletionHandler
from src.yd_distribution.application.executor import DistributionExecutor
from src.yd_distribution.application.scanner import EligibilityScanner
from src.yd_distribution.domain.models import (
    CompletionResult,
    DistributionSummary,
    PositionOutcome,
    PositionView,
)

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (SQLAlchemyError, OSError, TimeoutError)


class DistributionOrchestrator:
    def __init__(
        self,
        scanner: EligibilityScanner | None = None,
        executor: DistributionExecutor | None = None,
        completion: CompletionHandler | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._scanner = scanner or EligibilityScanner()
        self._executor = executor or DistributionExecutor()
        self._completion = completion or CompletionHandler(executor=self._executor)
        self._clock = clock

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    async def run_scheduled_distribution(
        self, db: AsyncSession, kind: PeriodKind
    ) -> DistributionSummary:
        """Credit due positions, then complete the ones past their duration."""
        now = self._clock()
        summary = DistributionSummary(period_kind=kind, started_at=now)
        tracker = _FailureTracker()

        due = await self._scanner.scan_due(db, kind, now)
        for view in due:
            summary.record(await self._distribute(db, view, tracker))

        expired = await self._scanner.scan_expired(db, kind, now)
        for view in expired:
            summary.record(await self._complete(db, view, now, tracker))

        tracker.raise_if_systemic()
        logger.info(
            "Scheduled %s distribution: %d position(s), %d period(s), %s credited, "
            "%d completed, %d error(s)",
            kind.value,
            summary.positions_processed,
            summary.total_periods_distributed,
            summary.total_amount_distributed,
            summary.positions_completed,
            summary.error_count,
        )
        return summary

    async def run_manual_distribution(
        self, db: AsyncSession, kind: PeriodKind, actor_id: str
    ) -> DistributionSummary:
        """Catch-up run: scans every ACTIVE position, so stuck expired ones are finalized."""
        now = self._clock()
        summary = DistributionSummary(period_kind=kind, started_at=now)
        tracker = _FailureTracker()
        logger.info("Manual %s distribution requested by %s", kind.value, actor_id)

        views = await self._scanner.scan_all_active(db, kind, now)
        for view in views:
            if view.has_plan_metadata and view.is_expired:
                summary.record(await self._complete(db, view, now, tracker))
            elif not view.has_plan_metadata or view.window.missing_periods > 0:
                summary.record(await self._distribute(db, view, tracker))

        tracker.raise_if_systemic()
        logger.info(
            "Manual %s distribution by %s: %d position(s), %d period(s), %s credited, "
            "%d completed, %d error(s)",
            kind.value,
            actor_id,
            summary.positions_processed,
            summary.total_periods_distributed,
            summary.total_amount_distributed,
            summary.positions_completed,
            summary.error_count,
        )
        return summary

    async def get_eligibility_preview(
        self, db: AsyncSession, kind: PeriodKind
    ) -> list[PositionView]:
        """Dry run: positions a manual run would touch. No writes."""
        views = await self._scanner.scan_all_active(db, kind, self._clock())
        return [
            v for v in views
            if not v.has_plan_metadata or v.window.missing_periods > 0 or v.is_expired
        ]

    async def complete_expired(
        self, db: AsyncSession, kind: PeriodKind, actor_id: str
    ) -> DistributionSummary:
        """Force completion of every ACTIVE position of `kind` past its duration."""
        now = self._clock()
        summary = DistributionSummary(period_kind=kind, started_at=now)
        tracker = _FailureTracker()
        for view in await self._scanner.scan_expired(db, kind, now):
            summary.record(await self._complete(db, view, now, tracker))
        tracker.raise_if_systemic()
        logger.info(
            "Force completion of expired %s positions by %s: %d completed, %d error(s)",
            kind.value,
            actor_id,
            summary.positions_completed,
            summary.error_count,
        )
        return summary

    async def complete_position(
        self, db: AsyncSession, position_id: str, actor_id: str
    ) -> CompletionResult:
        """Complete a single expired position. Errors propagate to the caller."""
        now = self._clock()
        view = await self._scanner.get_view(db, position_id, now)
        if view is None:
            raise PositionNotFoundError(position_id)
        if view.row.status != PositionStatus.ACTIVE:
            raise PositionNotActiveError(position_id, view.row.status.value)
        logger.info("Completion of position %s requested by %s", position_id, actor_id)
        return await self._completion.complete(db, view, now)

    # ------------------------------------------------------------------
    # Per-position boundary
    # ------------------------------------------------------------------

    async def _distribute(
        self, db: AsyncSession, view: PositionView, tracker: "_FailureTracker"
    ) -> PositionOutcome:
        outcome = PositionOutcome(position_id=view.position_id, owner_id=view.owner_id)
        try:
            result = await self._executor.execute(db, view)
        except AppError as exc:
            tracker.failed(storage=False)
            return _failed(outcome, exc.message)
        except _STORAGE_ERRORS as exc:
            tracker.failed(storage=True)
            return _failed(outcome, f"storage error: {exc}")
        except Exception as exc:
            tracker.failed(storage=False)
            return _failed(outcome, f"unexpected error: {exc}", exc_info=True)
        tracker.succeeded()
        outcome.periods_distributed = result.periods_distributed
        outcome.amount_distributed = result.total_amount
        return outcome

    async def _complete(
        self,
        db: AsyncSession,
        view: PositionView,
        now: datetime,
        tracker: "_FailureTracker",
    ) -> PositionOutcome:
        outcome = PositionOutcome(position_id=view.position_id, owner_id=view.owner_id)
        try:
            result = await self._completion.complete(db, view, now)
        except AppError as exc:
            tracker.failed(storage=False)
            return _failed(outcome, exc.message)
        except _STORAGE_ERRORS as exc:
            tracker.failed(storage=True)
            return _failed(outcome, f"storage error: {exc}")
        except Exception as exc:
            tracker.failed(storage=False)
            return _failed(outcome, f"unexpected error: {exc}", exc_info=True)
        tracker.succeeded()
        outcome.periods_distributed = result.periods_distributed
        outcome.amount_distributed = result.amount_distributed
        outcome.completed = result.completed
        return outcome


def _failed(
    outcome: PositionOutcome, message: str, exc_info: bool = False
) -> PositionOutcome:
    logger.warning(
        "Distribution failed for position %s: %s",
        outcome.position_id,
        message,
        exc_info=exc_info,
    )
    outcome.error = message
    return outcome


class _FailureTracker:
    """Distinguishes one bad position from storage being unreachable for all of them."""

    def __init__(self) -> None:
        self.attempted = 0
        self.storage_failures = 0

    def succeeded(self) -> None:
        self.attempted += 1

    def failed(self, storage: bool) -> None:
        self.attempted += 1
        if storage:
            self.storage_failures += 1

    def raise_if_systemic(self) -> None:
        if self.attempted > 0 and self.storage_failures == self.attempted:
            raise StorageUnavailableError(
                f"all {self.attempted} position(s) failed with storage errors"
            )
