"""DistributionOrchestrator: end-to-end behavior against the in-memory store."""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from src.yd_common.enums import AuditEntryType, PeriodKind, PositionStatus
from src.yd_common.errors import (
    PositionNotActiveError,
    PositionNotExpiredError,
    PositionNotFoundError,
    StorageUnavailableError,
)


class TestScheduledDistribution:
    async def test_backfills_all_elapsed_periods(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=6, total_periods=10)

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert store.record_indices(pid) == [1, 2, 3, 4, 5, 6]
        assert summary.positions_processed == 1
        assert summary.total_periods_distributed == 6
        assert summary.total_amount_distributed == Decimal("120.00")
        assert summary.positions_completed == 0
        assert summary.error_count == 0
        assert store.balances["user-1"] == Decimal("120.00")

    async def test_second_run_is_a_noop(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=6, total_periods=10)
        await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert summary.positions_processed == 0
        assert summary.total_amount_distributed == Decimal("0")
        assert store.record_indices(pid) == [1, 2, 3, 4, 5, 6]
        assert store.balances["user-1"] == Decimal("120.00")

    async def test_partial_catch_up_starts_after_last_paid_period(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=7, total_periods=10, already_paid=3)

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert summary.total_periods_distributed == 4
        assert store.record_indices(pid) == [1, 2, 3, 4, 5, 6, 7]
        profit = store.audit_for(pid, AuditEntryType.PROFIT)
        assert len(profit) == 4
        assert "period 4/10" in profit[0]["description"]

    async def test_next_day_pays_exactly_one_more_period(
        self, store, make_orchestrator, now
    ) -> None:
        pid = store.add_position(periods_ago=2, total_periods=10)
        await make_orchestrator(now).run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        later = make_orchestrator(now + timedelta(days=1, minutes=5))
        summary = await later.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert summary.total_periods_distributed == 1
        assert store.record_indices(pid) == [1, 2, 3]

    async def test_capped_backfill_then_completion(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=20, total_periods=5)

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert store.record_indices(pid) == [1, 2, 3, 4, 5]
        assert summary.positions_completed == 1
        assert summary.total_periods_distributed == 5
        assert store.positions[pid].status == PositionStatus.COMPLETED

    async def test_end_to_end_profit_plus_principal(self, store, orchestrator) -> None:
        pid = store.add_position(principal="1000.00", rate="0.02", total_periods=5, periods_ago=5)

        await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)
        await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert store.balances["user-1"] == Decimal("1100.00")
        assert store.record_sum(pid) == Decimal("100.00")
        assert len(store.audit_for(pid, AuditEntryType.PRINCIPAL_RETURN)) == 1

    async def test_profit_is_conserved_across_ledgers(self, store, orchestrator) -> None:
        pids = [
            store.add_position(owner_id="user-a", periods_ago=4, rate="0.015", principal="333.33"),
            store.add_position(owner_id="user-b", periods_ago=9, already_paid=2),
        ]

        await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        for pid in pids:
            assert store.record_sum(pid) == store.positions[pid].total_profit_accrued
        # 333.33 x 0.015 = 4.99995 rounds half-up to 5.00 per period
        assert store.balances["user-a"] == Decimal("20.00")
        assert store.record_sum(pids[0]) == Decimal("20.00")
        credited_b = sum(
            (a["amount"] for a in store.audit_for(pids[1], AuditEntryType.PROFIT)), Decimal("0")
        )
        assert credited_b == store.balances["user-b"] == Decimal("140.00")

    async def test_excludes_cancelled_positions(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=3, status=PositionStatus.CANCELLED)

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert summary.positions_processed == 0
        assert store.record_indices(pid) == []

    async def test_missing_plan_metadata_is_reported(self, store, orchestrator) -> None:
        broken = store.add_position(periods_ago=3, rate=None)
        healthy = store.add_position(periods_ago=3)

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert [e.position_id for e in summary.errors] == [broken]
        assert "plan metadata" in summary.errors[0].error
        assert store.record_indices(broken) == []
        assert store.record_indices(healthy) == [1, 2, 3]

    async def test_non_positive_plan_values_are_reported(self, store, orchestrator) -> None:
        zero_duration = store.add_position(periods_ago=3, total_periods=0)
        zero_rate = store.add_position(periods_ago=3, rate="0")

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert {e.position_id for e in summary.errors} == {zero_duration, zero_rate}
        assert all("plan metadata" in e.error for e in summary.errors)
        assert store.records == {}

    async def test_storage_error_does_not_abort_siblings(self, store, orchestrator) -> None:
        failing = store.add_position(periods_ago=3, owner_id="user-a")
        healthy = store.add_position(periods_ago=3, owner_id="user-b")
        store.failing_positions.add(failing)

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert summary.error_count == 1
        assert summary.errors[0].error.startswith("storage error")
        assert store.record_indices(healthy) == [1, 2, 3]
        assert "user-a" not in store.balances

    async def test_unexpected_error_does_not_abort_siblings(self, store, orchestrator) -> None:
        malformed = store.add_position(periods_ago=3, owner_id="user-a")
        healthy = store.add_position(periods_ago=3, owner_id="user-b")
        expired = store.add_position(periods_ago=9, total_periods=5, owner_id="user-c")
        store.insert_errors[malformed] = ValueError("unexpected row shape")
        store.insert_errors[expired] = TypeError("bad period amount")

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert summary.error_count == 2
        messages = {e.position_id: e.error for e in summary.errors}
        assert messages[malformed] == "unexpected error: unexpected row shape"
        assert messages[expired] == "unexpected error: bad period amount"
        assert store.record_indices(healthy) == [1, 2, 3]
        assert store.positions[expired].status == PositionStatus.ACTIVE
        assert "user-a" not in store.balances

    async def test_unexpected_errors_alone_are_not_systemic(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=3)
        store.insert_errors[pid] = ValueError("unexpected row shape")

        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert summary.error_count == 1

    async def test_all_positions_failing_storage_is_systemic(self, store, orchestrator) -> None:
        for owner in ("user-a", "user-b"):
            store.failing_positions.add(store.add_position(periods_ago=3, owner_id=owner))

        with pytest.raises(StorageUnavailableError) as exc_info:
            await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.DAILY)

        assert exc_info.value.http_status == 503

    async def test_empty_run_is_not_systemic(self, store, orchestrator) -> None:
        summary = await orchestrator.run_scheduled_distribution(store.session(), PeriodKind.HOURLY)

        assert summary.positions_processed == 0
        assert summary.period_kind == PeriodKind.HOURLY


class TestConcurrency:
    async def test_concurrent_runs_pay_each_period_once(self, store, make_orchestrator, now) -> None:
        pids = [store.add_position(periods_ago=6, owner_id=f"user-{i}") for i in range(3)]
        first, second = make_orchestrator(now), make_orchestrator(now)

        summaries = await asyncio.gather(
            first.run_scheduled_distribution(store.session(), PeriodKind.DAILY),
            second.run_scheduled_distribution(store.session(), PeriodKind.DAILY),
        )

        assert sum(s.total_periods_distributed for s in summaries) == 18
        for i, pid in enumerate(pids):
            assert store.record_indices(pid) == [1, 2, 3, 4, 5, 6]
            assert store.balances[f"user-{i}"] == Decimal("120.00")
            assert len(store.audit_for(pid, AuditEntryType.PROFIT)) == 6

    async def test_concurrent_runs_complete_once(self, store, make_orchestrator, now) -> None:
        pid = store.add_position(periods_ago=20, total_periods=5)

        summaries = await asyncio.gather(
            *(make_orchestrator(now).run_scheduled_distribution(
                store.session(), PeriodKind.DAILY
            ) for _ in range(3))
        )

        assert sum(s.positions_completed for s in summaries) == 1
        assert len(store.audit_for(pid, AuditEntryType.PRINCIPAL_RETURN)) == 1
        assert store.balances["user-1"] == Decimal("1100.00")

    async def test_scheduled_and_manual_race(self, store, make_orchestrator, now) -> None:
        pid = store.add_position(periods_ago=4)

        await asyncio.gather(
            make_orchestrator(now).run_scheduled_distribution(store.session(), PeriodKind.DAILY),
            make_orchestrator(now).run_manual_distribution(
                store.session(), PeriodKind.DAILY, "admin-1"
            ),
        )

        assert store.record_indices(pid) == [1, 2, 3, 4]
        assert store.balances["user-1"] == Decimal("80.00")


class TestManualDistribution:
    async def test_pays_and_completes_in_one_pass(self, store, orchestrator) -> None:
        running = store.add_position(periods_ago=2)
        expired = store.add_position(periods_ago=8, total_periods=5, already_paid=5)
        store.add_position(periods_ago=1, already_paid=1)  # nothing owed

        summary = await orchestrator.run_manual_distribution(
            store.session(), PeriodKind.DAILY, "admin-1"
        )

        assert summary.positions_processed == 2
        details = {d.position_id: d for d in summary.details}
        assert details[running].periods_distributed == 2
        assert details[expired].completed is True
        assert store.positions[expired].status == PositionStatus.COMPLETED


class TestPreview:
    async def test_preview_does_not_mutate(self, store, orchestrator) -> None:
        owing = store.add_position(periods_ago=3)
        expired = store.add_position(periods_ago=30, total_periods=5)
        store.add_position(periods_ago=0)

        views = await orchestrator.get_eligibility_preview(store.session(), PeriodKind.DAILY)

        assert {v.position_id for v in views} == {owing, expired}
        assert store.records == {}
        assert store.balances == {}
        assert store.audit == []


class TestCompletePosition:
    async def test_completes_expired_position(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=6, total_periods=5, already_paid=3)

        result = await orchestrator.complete_position(store.session(), pid, "admin-1")

        assert result.completed is True
        assert result.periods_distributed == 2
        assert store.balances["user-1"] == Decimal("1040.00")

    async def test_unexpired_position_raises(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=3, total_periods=5)

        with pytest.raises(PositionNotExpiredError):
            await orchestrator.complete_position(store.session(), pid, "admin-1")

    async def test_unknown_position_raises(self, store, orchestrator) -> None:
        with pytest.raises(PositionNotFoundError):
            await orchestrator.complete_position(store.session(), str(uuid.uuid4()), "admin-1")

    async def test_completed_position_raises(self, store, orchestrator) -> None:
        pid = store.add_position(periods_ago=6, total_periods=5, status=PositionStatus.COMPLETED)

        with pytest.raises(PositionNotActiveError):
            await orchestrator.complete_position(store.session(), pid, "admin-1")

    async def test_complete_expired_finalizes_all(self, store, orchestrator) -> None:
        pids = [store.add_position(periods_ago=10, total_periods=5) for _ in range(2)]
        store.add_position(periods_ago=2, total_periods=5)

        summary = await orchestrator.complete_expired(store.session(), PeriodKind.DAILY, "admin-1")

        assert summary.positions_completed == 2
        assert all(store.positions[p].status == PositionStatus.COMPLETED for p in pids)
