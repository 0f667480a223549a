"""Path-parameter parsing shared by the distribution routers."""

from src.yd_common.enums import PeriodKind
from src.yd_common.errors import InvalidPeriodKindError


def parse_period_kind(kind: str) -> PeriodKind:
    """FastAPI dependency: 'daily' | 'hourly' → PeriodKind (HTTP 422 otherwise)."""
    try:
        return PeriodKind.from_path(kind)
    except ValueError:
        raise InvalidPeriodKindError(kind) from None
