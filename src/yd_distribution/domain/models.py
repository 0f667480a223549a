"""Domain models for yd_distribution — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from src.yd_common.enums import PeriodKind, PositionStatus
from src.yd_common.money import ZERO

PERIOD_LENGTHS: dict[PeriodKind, timedelta] = {
    PeriodKind.DAILY: timedelta(days=1),
    PeriodKind.HOURLY: timedelta(hours=1),
}


def period_length_for(kind: PeriodKind) -> timedelta:
    return PERIOD_LENGTHS[kind]


@dataclass
class PositionRow:
    """A timed position joined with its plan, as read from storage.

    rate_per_period / total_periods are None when the plan row is missing or
    incomplete; such rows surface as data-integrity errors, never as payouts.
    """
    id: str
    owner_id: str
    period_kind: PeriodKind
    principal_amount: Decimal
    start_time: datetime
    status: PositionStatus
    already_distributed: int
    total_profit_accrued: Decimal = ZERO
    rate_per_period: Decimal | None = None
    total_periods: int | None = None
    end_time: datetime | None = None
    plan_id: str | None = None


@dataclass(frozen=True)
class PeriodWindow:
    missing_periods: int
    next_period_index: int
    elapsed_periods: int


@dataclass
class PositionView:
    """PositionRow annotated with its time window at scan time."""
    row: PositionRow
    period_length: timedelta
    window: PeriodWindow
    is_expired: bool
    raw_elapsed_periods: int

    @property
    def position_id(self) -> str:
        return self.row.id

    @property
    def owner_id(self) -> str:
        return self.row.owner_id

    @property
    def already_distributed(self) -> int:
        return self.row.already_distributed

    @property
    def elapsed_periods(self) -> int:
        return self.window.elapsed_periods

    @property
    def has_plan_metadata(self) -> bool:
        return (
            self.row.rate_per_period is not None
            and self.row.rate_per_period > 0
            and self.row.total_periods is not None
            and self.row.total_periods > 0
        )


@dataclass
class DistributionRecord:
    position_id: str
    period_index: int
    period_amount: Decimal
    credited_at: datetime
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class ExecutionResult:
    periods_distributed: int = 0
    total_amount: Decimal = ZERO
    periods_skipped: int = 0  # lost to a concurrent writer


@dataclass
class CompletionResult:
    periods_distributed: int = 0
    amount_distributed: Decimal = ZERO
    completed: bool = False
    principal_returned: Decimal = ZERO


@dataclass
class PositionOutcome:
    position_id: str
    owner_id: str
    periods_distributed: int = 0
    amount_distributed: Decimal = ZERO
    completed: bool = False
    error: str | None = None


@dataclass
class DistributionSummary:
    period_kind: PeriodKind
    started_at: datetime
    positions_processed: int = 0
    total_periods_distributed: int = 0
    total_amount_distributed: Decimal = ZERO
    positions_completed: int = 0
    errors: list[PositionOutcome] = field(default_factory=list)
    details: list[PositionOutcome] = field(default_factory=list)

    def record(self, outcome: PositionOutcome) -> None:
        """Fold one position's outcome into the aggregate."""
        self.positions_processed += 1
        self.total_periods_distributed += outcome.periods_distributed
        self.total_amount_distributed += outcome.amount_distributed
        if outcome.completed:
            self.positions_completed += 1
        if outcome.error is not None:
            self.errors.append(outcome)
        self.details.append(outcome)

    @property
    def error_count(self) -> int:
        return len(self.errors)
