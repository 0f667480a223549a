"""Pydantic response schemas for yd_distribution API.

Amounts are serialized as strings ("20.00") to keep Decimal precision.
"""

from datetime import datetime

from pydantic import BaseModel

from src.yd_common.money import amount_to_display
from src.yd_distribution.domain.models import (
    CompletionResult,
    DistributionRecord,
    DistributionSummary,
    PositionOutcome,
    PositionView,
)


class PositionOutcomeItem(BaseModel):
    position_id: str
    owner_id: str
    periods_distributed: int
    amount_distributed: str
    completed: bool
    error: str | None

    @classmethod
    def from_outcome(cls, outcome: PositionOutcome) -> "PositionOutcomeItem":
        return cls(
            position_id=outcome.position_id,
            owner_id=outcome.owner_id,
            periods_distributed=outcome.periods_distributed,
            amount_distributed=str(outcome.amount_distributed),
            completed=outcome.completed,
            error=outcome.error,
        )


class DistributionErrorItem(BaseModel):
    position_id: str
    message: str


class DistributionSummaryResponse(BaseModel):
    period_kind: str
    started_at: str  # ISO8601 string
    positions_processed: int
    total_periods_distributed: int
    total_amount_distributed: str
    total_amount_display: str
    positions_completed: int
    error_count: int
    errors: list[DistributionErrorItem]
    details: list[PositionOutcomeItem] | None = None

    @classmethod
    def from_summary(
        cls, summary: DistributionSummary, with_details: bool = False
    ) -> "DistributionSummaryResponse":
        return cls(
            period_kind=summary.period_kind.value,
            started_at=summary.started_at.isoformat(),
            positions_processed=summary.positions_processed,
            total_periods_distributed=summary.total_periods_distributed,
            total_amount_distributed=str(summary.total_amount_distributed),
            total_amount_display=amount_to_display(summary.total_amount_distributed),
            positions_completed=summary.positions_completed,
            error_count=summary.error_count,
            errors=[
                DistributionErrorItem(position_id=e.position_id, message=e.error or "")
                for e in summary.errors
            ],
            details=(
                [PositionOutcomeItem.from_outcome(d) for d in summary.details]
                if with_details
                else None
            ),
        )


class EligibilityPreviewItem(BaseModel):
    position_id: str
    owner_id: str
    pending_periods: int
    already_distributed: int
    elapsed_periods: int
    total_periods: int | None
    is_expired: bool
    periods_overdue: int
    plan_metadata_ok: bool

    @classmethod
    def from_view(cls, view: PositionView) -> "EligibilityPreviewItem":
        total = view.row.total_periods
        return cls(
            position_id=view.position_id,
            owner_id=view.owner_id,
            pending_periods=view.window.missing_periods,
            already_distributed=view.already_distributed,
            elapsed_periods=view.elapsed_periods,
            total_periods=total,
            is_expired=view.is_expired,
            periods_overdue=max(view.raw_elapsed_periods - total, 0) if total else 0,
            plan_metadata_ok=view.has_plan_metadata,
        )


class CompletionResponse(BaseModel):
    position_id: str
    periods_distributed: int
    amount_distributed: str
    completed: bool
    principal_returned: str

    @classmethod
    def from_result(cls, position_id: str, result: CompletionResult) -> "CompletionResponse":
        return cls(
            position_id=position_id,
            periods_distributed=result.periods_distributed,
            amount_distributed=str(result.amount_distributed),
            completed=result.completed,
            principal_returned=str(result.principal_returned),
        )


class PositionProgressResponse(BaseModel):
    position_id: str
    period_kind: str
    status: str
    principal_amount: str
    rate_per_period: str | None
    total_periods: int | None
    elapsed_periods: int
    periods_distributed: int
    periods_remaining: int
    progress_percentage: float
    total_profit_accrued: str
    total_profit_display: str
    start_time: str
    end_time: str | None
    next_profit_due: str | None

    @classmethod
    def from_view(
        cls,
        view: PositionView,
        periods_remaining: int,
        progress_percentage: float,
        next_profit_due: datetime | None,
    ) -> "PositionProgressResponse":
        row = view.row
        return cls(
            position_id=row.id,
            period_kind=row.period_kind.value,
            status=row.status.value,
            principal_amount=str(row.principal_amount),
            rate_per_period=str(row.rate_per_period) if row.rate_per_period is not None else None,
            total_periods=row.total_periods,
            elapsed_periods=view.elapsed_periods,
            periods_distributed=row.already_distributed,
            periods_remaining=periods_remaining,
            progress_percentage=progress_percentage,
            total_profit_accrued=str(row.total_profit_accrued),
            total_profit_display=amount_to_display(row.total_profit_accrued),
            start_time=row.start_time.isoformat(),
            end_time=row.end_time.isoformat() if row.end_time else None,
            next_profit_due=next_profit_due.isoformat() if next_profit_due else None,
        )


class DistributionRecordItem(BaseModel):
    period_index: int
    period_amount: str
    credited_at: str  # ISO8601 string, the period boundary

    @classmethod
    def from_record(cls, record: DistributionRecord) -> "DistributionRecordItem":
        return cls(
            period_index=record.period_index,
            period_amount=str(record.period_amount),
            credited_at=record.credited_at.isoformat(),
        )


class DistributionHistoryResponse(BaseModel):
    position_id: str
    total_profit_accrued: str
    items: list[DistributionRecordItem]
