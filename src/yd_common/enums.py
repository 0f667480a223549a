"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class PeriodKind(str, Enum):
    """Accrual cadence of a position: one payment per day or per hour."""
    DAILY = "DAILY"
    HOURLY = "HOURLY"

    @classmethod
    def from_path(cls, value: str) -> "PeriodKind":
        """Parse the lowercase URL form ('daily' / 'hourly')."""
        return cls(value.upper())


class PositionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AuditEntryType(str, Enum):
    PROFIT = "PROFIT"
    PRINCIPAL_RETURN = "PRINCIPAL_RETURN"


class ReferenceType(str, Enum):
    POSITION = "POSITION"
