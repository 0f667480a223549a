"""In-memory transactional store for engine-level tests.

InMemoryStore implements all four store Protocols. Writes are applied
immediately and recorded in a per-session undo log; rollback() replays the
log backwards, commit() clears it. The (position_id, period_index) key is
unique across sessions, mirroring the database constraint. Every method
yields to the event loop so concurrent invocations interleave.
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from src.yd_common.enums import AuditEntryType, PeriodKind, PositionStatus
from src.yd_common.money import calculate_period_amount
from src.yd_distribution.application.completion import CompletionHandler
from src.yd_distribution.application.executor import DistributionExecutor
from src.yd_distribution.application.scanner import EligibilityScanner
from src.yd_distribution.application.service import DistributionOrchestrator
from src.yd_distribution.domain.models import (
    DistributionRecord,
    PositionRow,
    period_length_for,
)
from src.yd_distribution.domain.time_window import raw_elapsed_periods

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class FakeSession:
    def __init__(self, store: "InMemoryStore") -> None:
        self._store = store
        self.undo: list[Callable[[], None]] = []
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.undo.clear()
        self.commits += 1

    async def rollback(self) -> None:
        while self.undo:
            self.undo.pop()()
        self.rollbacks += 1


class InMemoryStore:
    def __init__(self) -> None:
        self.positions: dict[str, PositionRow] = {}
        self.records: dict[tuple[str, int], DistributionRecord] = {}
        self.balances: dict[str, Decimal] = {}
        self.audit: list[dict] = []
        self.timeouts_applied = 0
        self.failing_positions: set[str] = set()
        self.reject_inserts_for: set[str] = set()
        self.insert_errors: dict[str, Exception] = {}

    def session(self) -> FakeSession:
        return FakeSession(self)

    # -- seeding ---------------------------------------------------------

    def add_position(
        self,
        *,
        owner_id: str = "user-1",
        principal: str = "1000.00",
        rate: str | None = "0.02",
        total_periods: int | None = 10,
        periods_ago: float = 0,
        kind: PeriodKind = PeriodKind.DAILY,
        status: PositionStatus = PositionStatus.ACTIVE,
        already_paid: int = 0,
        now: datetime = NOW,
    ) -> str:
        position_id = str(uuid.uuid4())
        length = period_length_for(kind)
        start = now - periods_ago * length
        amount = calculate_period_amount(Decimal(principal), Decimal(rate or "0"))
        for index in range(1, already_paid + 1):
            self.records[(position_id, index)] = DistributionRecord(
                position_id=position_id,
                period_index=index,
                period_amount=amount,
                credited_at=start + index * length,
            )
        self.positions[position_id] = PositionRow(
            id=position_id,
            owner_id=owner_id,
            period_kind=kind,
            principal_amount=Decimal(principal),
            start_time=start,
            status=status,
            already_distributed=0,
            total_profit_accrued=amount * already_paid,
            rate_per_period=Decimal(rate) if rate is not None else None,
            total_periods=total_periods,
        )
        return position_id

    # -- inspection ------------------------------------------------------

    def record_indices(self, position_id: str) -> list[int]:
        return sorted(i for (pid, i) in self.records if pid == position_id)

    def record_sum(self, position_id: str) -> Decimal:
        return sum(
            (r.period_amount for (pid, _), r in self.records.items() if pid == position_id),
            Decimal("0"),
        )

    def audit_for(self, position_id: str, entry_type: AuditEntryType) -> list[dict]:
        return [
            a for a in self.audit
            if a["reference_id"] == position_id and a["entry_type"] == entry_type
        ]

    def _snapshot(self, row: PositionRow) -> PositionRow:
        count = len(self.record_indices(row.id))
        return replace(row, already_distributed=count)

    def _check_available(self, position_id: str) -> None:
        if position_id in self.failing_positions:
            raise OperationalError("SELECT 1", {}, ConnectionError("connection reset"))

    # -- PositionStoreProtocol -------------------------------------------

    async def list_due(self, db, kind: PeriodKind, now: datetime) -> list[PositionRow]:
        await asyncio.sleep(0)
        rows = []
        for row in await self.list_all_active(db, kind):
            if (
                row.rate_per_period is None
                or row.total_periods is None
                or row.rate_per_period <= 0
                or row.total_periods <= 0
            ):
                rows.append(row)
                continue
            elapsed = raw_elapsed_periods(row.start_time, period_length_for(kind), now)
            if row.already_distributed < elapsed < row.total_periods:
                rows.append(row)
        return rows

    async def list_all_active(self, db, kind: PeriodKind) -> list[PositionRow]:
        await asyncio.sleep(0)
        return [
            self._snapshot(row)
            for row in sorted(self.positions.values(), key=lambda r: (r.start_time, r.id))
            if row.status == PositionStatus.ACTIVE and row.period_kind == kind
        ]

    async def get_position(self, db, position_id: str) -> PositionRow | None:
        await asyncio.sleep(0)
        row = self.positions.get(position_id)
        return self._snapshot(row) if row else None

    async def add_profit_accrued(self, db: FakeSession, position_id: str, amount: Decimal) -> None:
        await asyncio.sleep(0)
        row = self.positions[position_id]
        row.total_profit_accrued += amount

        def undo() -> None:
            row.total_profit_accrued -= amount

        db.undo.append(undo)

    async def mark_completed(self, db: FakeSession, position_id: str, end_time: datetime) -> bool:
        await asyncio.sleep(0)
        row = self.positions[position_id]
        if row.status != PositionStatus.ACTIVE:
            return False
        row.status = PositionStatus.COMPLETED
        row.end_time = end_time

        def undo() -> None:
            row.status = PositionStatus.ACTIVE
            row.end_time = None

        db.undo.append(undo)
        return True

    async def apply_statement_timeout(self, db, timeout_ms: int) -> None:
        self.timeouts_applied += 1

    # -- DistributionRecordStoreProtocol ---------------------------------

    async def insert_if_absent(
        self,
        db: FakeSession,
        position_id: str,
        period_index: int,
        amount: Decimal,
        period_time: datetime,
    ) -> bool:
        self._check_available(position_id)
        if position_id in self.insert_errors:
            raise self.insert_errors[position_id]
        await asyncio.sleep(0)
        key = (position_id, period_index)
        if key in self.records or position_id in self.reject_inserts_for:
            return False
        self.records[key] = DistributionRecord(
            position_id=position_id,
            period_index=period_index,
            period_amount=amount,
            credited_at=period_time,
        )
        db.undo.append(lambda: self.records.pop(key))
        return True

    async def count_for(self, db, position_id: str) -> int:
        self._check_available(position_id)
        await asyncio.sleep(0)
        return len(self.record_indices(position_id))

    async def list_for(self, db, position_id: str) -> list[DistributionRecord]:
        return [self.records[(position_id, i)] for i in self.record_indices(position_id)]

    # -- BalanceStoreProtocol / AuditStoreProtocol -----------------------

    async def increment(self, db: FakeSession, owner_id: str, amount: Decimal) -> Decimal:
        await asyncio.sleep(0)
        self.balances[owner_id] = self.balances.get(owner_id, Decimal("0")) + amount

        def undo() -> None:
            self.balances[owner_id] -= amount

        db.undo.append(undo)
        return self.balances[owner_id]

    async def append(
        self,
        db: FakeSession,
        owner_id: str,
        entry_type: AuditEntryType,
        amount: Decimal,
        balance_after: Decimal,
        reference_id: str,
        description: str,
    ) -> None:
        await asyncio.sleep(0)
        entry = {
            "owner_id": owner_id,
            "entry_type": entry_type,
            "amount": amount,
            "balance_after": balance_after,
            "reference_id": reference_id,
            "description": description,
        }
        self.audit.append(entry)
        db.undo.append(lambda: self.audit.remove(entry))


def build_orchestrator(
    store: InMemoryStore, now: datetime = NOW
) -> DistributionOrchestrator:
    executor = DistributionExecutor(store, store, store, store, statement_timeout_ms=1000)
    completion = CompletionHandler(
        executor, store, store, store, store, statement_timeout_ms=1000
    )
    return DistributionOrchestrator(
        scanner=EligibilityScanner(store),
        executor=executor,
        completion=completion,
        clock=lambda: now,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def orchestrator(store: InMemoryStore) -> DistributionOrchestrator:
    return build_orchestrator(store)


@pytest.fixture
def make_orchestrator(
    store: InMemoryStore,
) -> Callable[[datetime], DistributionOrchestrator]:
    """Orchestrator factory pinned to a given clock reading."""
    return lambda now: build_orchestrator(store, now)


@pytest.fixture
def now() -> datetime:
    return NOW
