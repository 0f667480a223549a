"""Store Protocols — dependency inversion for testability.

Unit tests inject in-memory fakes or mocks that conform to these Protocols.
Infrastructure layer provides the real PostgreSQL implementations.

Transaction ownership: the CALLER (executor / completion handler) commits or
rolls back on the AsyncSession it passes in. Stores never commit.
"""

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.yd_common.enums import AuditEntryType, PeriodKind
from src.yd_distribution.domain.models import DistributionRecord, PositionRow


class PositionStoreProtocol(Protocol):
    async def list_due(
        self, db: AsyncSession, kind: PeriodKind, now: datetime
    ) -> list[PositionRow]: ...

    async def list_all_active(
        self, db: AsyncSession, kind: PeriodKind
    ) -> list[PositionRow]: ...

    async def get_position(
        self, db: AsyncSession, position_id: str
    ) -> PositionRow | None: ...

    async def add_profit_accrued(
        self, db: AsyncSession, position_id: str, amount: Decimal
    ) -> None: ...

    async def mark_completed(
        self, db: AsyncSession, position_id: str, end_time: datetime
    ) -> bool: ...

    async def apply_statement_timeout(self, db: AsyncSession, timeout_ms: int) -> None: ...


class DistributionRecordStoreProtocol(Protocol):
    async def insert_if_absent(
        self,
        db: AsyncSession,
        position_id: str,
        period_index: int,
        amount: Decimal,
        period_time: datetime,
    ) -> bool: ...

    async def count_for(self, db: AsyncSession, position_id: str) -> int: ...

    async def list_for(
        self, db: AsyncSession, position_id: str
    ) -> list[DistributionRecord]: ...


class BalanceStoreProtocol(Protocol):
    async def increment(
        self, db: AsyncSession, owner_id: str, amount: Decimal
    ) -> Decimal: ...


class AuditStoreProtocol(Protocol):
    async def append(
        self,
        db: AsyncSession,
        owner_id: str,
        entry_type: AuditEntryType,
        amount: Decimal,
        balance_after: Decimal,
        reference_id: str,
        description: str,
    ) -> None: ...
