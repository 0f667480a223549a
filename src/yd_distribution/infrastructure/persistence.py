"""PostgreSQL stores — concrete implementations of the store Protocols.

All balance and accrual mutations are single atomic statements
(`x = x + :amount`); nothing is read-then-written from Python.
The UNIQUE (position_id, period_index) constraint on distribution_records is
the only concurrency guard: `ON CONFLICT DO NOTHING RETURNING` yields no row
when another transaction already owns that period.

Transaction ownership: The CALLER (executor / completion handler) is
responsible for committing or rolling back the session.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.yd_common.enums import AuditEntryType, PeriodKind, PositionStatus, ReferenceType
from src.yd_common.errors import BalanceUpdateError
from src.yd_distribution.domain.models import (
    DistributionRecord,
    PositionRow,
    period_length_for,
)

# ---------------------------------------------------------------------------
# SQL: positions
# ---------------------------------------------------------------------------

_POSITION_COLUMNS = """
    p.id, p.owner_id, p.plan_id, p.period_kind, p.principal_amount,
    p.start_time, p.status, p.end_time, p.total_profit_accrued,
    yp.rate_per_period, yp.total_periods,
    (SELECT COUNT(*) FROM distribution_records dr
     WHERE dr.position_id = p.id) AS already_distributed
"""

_LIST_ALL_ACTIVE_SQL = text(f"""
    SELECT {_POSITION_COLUMNS}
    FROM timed_positions p
    LEFT JOIN yield_plans yp ON yp.id = p.plan_id
    WHERE p.status = 'ACTIVE'
      AND p.period_kind = :kind
    ORDER BY p.start_time ASC, p.id ASC
""")

# Rows with missing or non-positive plan metadata are returned too,
# so the caller reports them.
_LIST_DUE_SQL = text(f"""
    WITH candidates AS (
        SELECT {_POSITION_COLUMNS},
               FLOOR(EXTRACT(EPOCH FROM (CAST(:now AS TIMESTAMPTZ) - p.start_time))
                     / :period_seconds) AS raw_elapsed
        FROM timed_positions p
        LEFT JOIN yield_plans yp ON yp.id = p.plan_id
        WHERE p.status = 'ACTIVE'
          AND p.period_kind = :kind
    )
    SELECT *
    FROM candidates
    WHERE rate_per_period IS NULL
       OR total_periods IS NULL
       OR rate_per_period <= 0
       OR total_periods <= 0
       OR (raw_elapsed > already_distributed AND raw_elapsed < total_periods)
    ORDER BY start_time ASC, id ASC
""")

_GET_POSITION_SQL = text(f"""
    SELECT {_POSITION_COLUMNS}
    FROM timed_positions p
    LEFT JOIN yield_plans yp ON yp.id = p.plan_id
    WHERE p.id = CAST(:position_id AS UUID)
""")

_ADD_PROFIT_ACCRUED_SQL = text("""
    UPDATE timed_positions
    SET total_profit_accrued = total_profit_accrued + :amount,
        updated_at = NOW()
    WHERE id = CAST(:position_id AS UUID)
    RETURNING id
""")

# Optimistic guard: only an ACTIVE row transitions, so a second completer gets no row.
_MARK_COMPLETED_SQL = text("""
    UPDATE timed_positions
    SET status = 'COMPLETED',
        end_time = :end_time,
        updated_at = NOW()
    WHERE id = CAST(:position_id AS UUID)
      AND status = 'ACTIVE'
    RETURNING id
""")

_SET_STATEMENT_TIMEOUT_SQL = text(
    "SELECT set_config('statement_timeout', :timeout, true)"
)

# ---------------------------------------------------------------------------
# SQL: distribution_records
# ---------------------------------------------------------------------------

_INSERT_RECORD_SQL = text("""
    INSERT INTO distribution_records
        (position_id, period_index, period_amount, credited_at)
    VALUES
        (CAST(:position_id AS UUID), :period_index, :amount, :credited_at)
    ON CONFLICT (position_id, period_index) DO NOTHING
    RETURNING id
""")

_COUNT_RECORDS_SQL = text("""
    SELECT COUNT(*) AS cnt
    FROM distribution_records
    WHERE position_id = CAST(:position_id AS UUID)
""")

_LIST_RECORDS_SQL = text("""
    SELECT id, position_id, period_index, period_amount, credited_at, created_at
    FROM distribution_records
    WHERE position_id = CAST(:position_id AS UUID)
    ORDER BY period_index ASC
""")

# ---------------------------------------------------------------------------
# SQL: balances / audit_transactions
# ---------------------------------------------------------------------------

_INCREMENT_BALANCE_SQL = text("""
    INSERT INTO balances (owner_id, total_amount)
    VALUES (:owner_id, :amount)
    ON CONFLICT (owner_id) DO UPDATE
        SET total_amount = balances.total_amount + EXCLUDED.total_amount,
            version = balances.version + 1,
            updated_at = NOW()
    RETURNING total_amount
""")

_INSERT_AUDIT_SQL = text("""
    INSERT INTO audit_transactions
        (owner_id, entry_type, amount, balance_after,
         reference_type, reference_id, description)
    VALUES
        (:owner_id, :entry_type, :amount, :balance_after,
         :reference_type, :reference_id, :description)
""")


def _row_to_position(row: object) -> PositionRow:
    rate = row.rate_per_period  # type: ignore[attr-defined]
    total = row.total_periods  # type: ignore[attr-defined]
    return PositionRow(
        id=str(row.id),  # type: ignore[attr-defined]
        owner_id=row.owner_id,  # type: ignore[attr-defined]
        plan_id=str(row.plan_id) if row.plan_id is not None else None,  # type: ignore[attr-defined]
        period_kind=PeriodKind(row.period_kind),  # type: ignore[attr-defined]
        principal_amount=Decimal(row.principal_amount),  # type: ignore[attr-defined]
        start_time=row.start_time,  # type: ignore[attr-defined]
        status=PositionStatus(row.status),  # type: ignore[attr-defined]
        end_time=row.end_time,  # type: ignore[attr-defined]
        total_profit_accrued=Decimal(row.total_profit_accrued),  # type: ignore[attr-defined]
        rate_per_period=Decimal(rate) if rate is not None else None,
        total_periods=int(total) if total is not None else None,
        already_distributed=int(row.already_distributed),  # type: ignore[attr-defined]
    )


def _row_to_record(row: object) -> DistributionRecord:
    return DistributionRecord(
        id=row.id,  # type: ignore[attr-defined]
        position_id=str(row.position_id),  # type: ignore[attr-defined]
        period_index=row.period_index,  # type: ignore[attr-defined]
        period_amount=Decimal(row.period_amount),  # type: ignore[attr-defined]
        credited_at=row.credited_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class PositionStore:
    """Reads timed positions (joined with plans) and applies engine-owned mutations."""

    async def list_due(
        self, db: AsyncSession, kind: PeriodKind, now: datetime
    ) -> list[PositionRow]:
        period_seconds = int(period_length_for(kind).total_seconds())
        result = await db.execute(
            _LIST_DUE_SQL,
            {"kind": kind.value, "now": now, "period_seconds": period_seconds},
        )
        return [_row_to_position(row) for row in result.fetchall()]

    async def list_all_active(
        self, db: AsyncSession, kind: PeriodKind
    ) -> list[PositionRow]:
        result = await db.execute(_LIST_ALL_ACTIVE_SQL, {"kind": kind.value})
        return [_row_to_position(row) for row in result.fetchall()]

    async def get_position(
        self, db: AsyncSession, position_id: str
    ) -> PositionRow | None:
        result = await db.execute(_GET_POSITION_SQL, {"position_id": position_id})
        row = result.fetchone()
        return _row_to_position(row) if row else None

    async def add_profit_accrued(
        self, db: AsyncSession, position_id: str, amount: Decimal
    ) -> None:
        await db.execute(
            _ADD_PROFIT_ACCRUED_SQL, {"position_id": position_id, "amount": amount}
        )

    async def mark_completed(
        self, db: AsyncSession, position_id: str, end_time: datetime
    ) -> bool:
        result = await db.execute(
            _MARK_COMPLETED_SQL, {"position_id": position_id, "end_time": end_time}
        )
        return result.fetchone() is not None

    async def apply_statement_timeout(self, db: AsyncSession, timeout_ms: int) -> None:
        """Bound every statement of the current transaction (SET LOCAL semantics)."""
        await db.execute(_SET_STATEMENT_TIMEOUT_SQL, {"timeout": str(timeout_ms)})


class DistributionRecordStore:
    async def insert_if_absent(
        self,
        db: AsyncSession,
        position_id: str,
        period_index: int,
        amount: Decimal,
        period_time: datetime,
    ) -> bool:
        result = await db.execute(
            _INSERT_RECORD_SQL,
            {
                "position_id": position_id,
                "period_index": period_index,
                "amount": amount,
                "credited_at": period_time,
            },
        )
        return result.fetchone() is not None

    async def count_for(self, db: AsyncSession, position_id: str) -> int:
        result = await db.execute(_COUNT_RECORDS_SQL, {"position_id": position_id})
        row = result.fetchone()
        return int(row.cnt) if row else 0

    async def list_for(
        self, db: AsyncSession, position_id: str
    ) -> list[DistributionRecord]:
        result = await db.execute(_LIST_RECORDS_SQL, {"position_id": position_id})
        return [_row_to_record(row) for row in result.fetchall()]


class BalanceStore:
    async def increment(
        self, db: AsyncSession, owner_id: str, amount: Decimal
    ) -> Decimal:
        """Atomically add `amount`, creating the balance row on first credit."""
        result = await db.execute(
            _INCREMENT_BALANCE_SQL, {"owner_id": owner_id, "amount": amount}
        )
        row = result.fetchone()
        if row is None:
            raise BalanceUpdateError(owner_id)
        return Decimal(row.total_amount)


class AuditStore:
    async def append(
        self,
        db: AsyncSession,
        owner_id: str,
        entry_type: AuditEntryType,
        amount: Decimal,
        balance_after: Decimal,
        reference_id: str,
        description: str,
    ) -> None:
        await db.execute(
            _INSERT_AUDIT_SQL,
            {
                "owner_id": owner_id,
                "entry_type": entry_type.value,
                "amount": amount,
                "balance_after": balance_after,
                "reference_type": ReferenceType.POSITION.value,
                "reference_id": reference_id,
                "description": description,
            },
        )
