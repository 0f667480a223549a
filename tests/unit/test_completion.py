"""CompletionHandler: final catch-up, gap refusal, exactly-once principal return."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from src.yd_common.enums import AuditEntryType, PositionStatus
from src.yd_common.errors import (
    IncompleteDistributionError,
    PlanMetadataError,
    PositionNotExpiredError,
)
from src.yd_distribution.application.completion import CompletionHandler
from src.yd_distribution.application.executor import DistributionExecutor
from src.yd_distribution.application.scanner import EligibilityScanner


@pytest.fixture
def handler(store) -> CompletionHandler:
    executor = DistributionExecutor(store, store, store, store, statement_timeout_ms=1000)
    return CompletionHandler(executor, store, store, store, store, statement_timeout_ms=1000)


async def _view(store, position_id, now):
    return await EligibilityScanner(store).get_view(store.session(), position_id, now)


class TestComplete:
    async def test_pays_missing_periods_then_returns_principal(self, store, handler, now) -> None:
        pid = store.add_position(periods_ago=20, total_periods=5)
        db = store.session()

        result = await handler.complete(db, await _view(store, pid, now), now)

        assert result.completed is True
        assert result.periods_distributed == 5
        assert result.amount_distributed == Decimal("100.00")
        assert result.principal_returned == Decimal("1000.00")
        assert store.record_indices(pid) == [1, 2, 3, 4, 5]
        assert store.positions[pid].status == PositionStatus.COMPLETED
        assert store.positions[pid].end_time == now
        assert store.balances["user-1"] == Decimal("1100.00")
        principal = store.audit_for(pid, AuditEntryType.PRINCIPAL_RETURN)
        assert len(principal) == 1
        assert principal[0]["balance_after"] == Decimal("1100.00")

    async def test_only_final_period_missing(self, store, handler, now) -> None:
        pid = store.add_position(periods_ago=5, total_periods=5, already_paid=4)

        result = await handler.complete(store.session(), await _view(store, pid, now), now)

        assert result.periods_distributed == 1
        assert store.record_indices(pid) == [1, 2, 3, 4, 5]
        assert store.balances["user-1"] == Decimal("1020.00")

    async def test_stale_view_is_recounted(self, store, handler, now) -> None:
        pid = store.add_position(periods_ago=6, total_periods=5)
        view = await _view(store, pid, now)
        # Another run pays everything between the scan and completion
        other = store.session()
        await DistributionExecutor(
            store, store, store, store, statement_timeout_ms=1000
        ).execute(other, view)

        result = await handler.complete(store.session(), view, now)

        assert result.periods_distributed == 0
        assert result.completed is True
        assert store.record_sum(pid) == Decimal("100.00")
        assert len(store.audit_for(pid, AuditEntryType.PROFIT)) == 5

    async def test_refuses_unexpired_position(self, store, handler, now) -> None:
        pid = store.add_position(periods_ago=3, total_periods=5)

        with pytest.raises(PositionNotExpiredError) as exc_info:
            await handler.complete(store.session(), await _view(store, pid, now), now)

        assert exc_info.value.code == 5003
        assert store.record_indices(pid) == []
        assert store.positions[pid].status == PositionStatus.ACTIVE

    async def test_refuses_missing_plan_metadata(self, store, handler, now) -> None:
        pid = store.add_position(periods_ago=20, rate=None)

        with pytest.raises(PlanMetadataError):
            await handler.complete(store.session(), await _view(store, pid, now), now)

        assert store.positions[pid].status == PositionStatus.ACTIVE

    async def test_gap_blocks_completion_and_rolls_back(self, store, handler, now) -> None:
        pid = store.add_position(periods_ago=20, total_periods=5)
        store.reject_inserts_for.add(pid)
        db = store.session()

        with pytest.raises(IncompleteDistributionError) as exc_info:
            await handler.complete(db, await _view(store, pid, now), now)

        assert exc_info.value.code == 6002
        assert exc_info.value.http_status == 409
        assert store.positions[pid].status == PositionStatus.ACTIVE
        assert "user-1" not in store.balances
        assert db.rollbacks >= 1

    async def test_already_completed_elsewhere_returns_not_completed(
        self, store, handler, now
    ) -> None:
        pid = store.add_position(periods_ago=20, total_periods=5, already_paid=5)
        view = await _view(store, pid, now)
        store.positions[pid].status = PositionStatus.COMPLETED

        result = await handler.complete(store.session(), view, now)

        assert result.completed is False
        assert result.principal_returned == Decimal("0")
        assert store.audit_for(pid, AuditEntryType.PRINCIPAL_RETURN) == []

    async def test_concurrent_completions_return_principal_once(
        self, store, handler, now
    ) -> None:
        pid = store.add_position(periods_ago=20, total_periods=5)
        view_a = await _view(store, pid, now)
        view_b = await _view(store, pid, now)

        results = await asyncio.gather(
            handler.complete(store.session(), view_a, now),
            handler.complete(store.session(), view_b, now + timedelta(seconds=1)),
        )

        assert sorted(r.completed for r in results) == [False, True]
        assert sum(r.periods_distributed for r in results) == 5
        assert store.record_indices(pid) == [1, 2, 3, 4, 5]
        assert len(store.audit_for(pid, AuditEntryType.PRINCIPAL_RETURN)) == 1
        assert store.balances["user-1"] == Decimal("1100.00")
