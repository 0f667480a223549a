"""Time window arithmetic — pure functions, no I/O.

A position accrues one payment per whole period elapsed since start_time,
capped at its total duration. Everything here is a function of its
arguments only, so every caller (scanner, executor, progress view) agrees on
how many periods are owed at a given instant.
"""

from datetime import datetime, timedelta

from src.yd_common.datetime_utils import ensure_utc
from src.yd_distribution.domain.models import PeriodWindow


def raw_elapsed_periods(start_time: datetime, period_length: timedelta, now: datetime) -> int:
    """Whole periods between start_time and now, uncapped. 0 on clock skew."""
    delta = ensure_utc(now) - ensure_utc(start_time)
    if delta <= timedelta(0):
        return 0
    return delta // period_length


def compute_window(
    start_time: datetime,
    period_length: timedelta,
    now: datetime,
    total_periods: int,
    already_distributed: int,
) -> PeriodWindow:
    """How many periods are still owed.

    >>> from datetime import timezone
    >>> t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
    >>> compute_window(t0, timedelta(days=1), t0 + timedelta(days=7, hours=3), 10, 3)
    PeriodWindow(missing_periods=4, next_period_index=4, elapsed_periods=7)
    """
    elapsed = min(raw_elapsed_periods(start_time, period_length, now), total_periods)
    return PeriodWindow(
        missing_periods=max(elapsed - already_distributed, 0),
        next_period_index=already_distributed + 1,
        elapsed_periods=elapsed,
    )


def period_boundary(start_time: datetime, period_length: timedelta, period_index: int) -> datetime:
    """Instant at which period `period_index` (1-based) finished accruing."""
    return ensure_utc(start_time) + period_index * period_length


def is_expired(
    start_time: datetime, period_length: timedelta, now: datetime, total_periods: int
) -> bool:
    return raw_elapsed_periods(start_time, period_length, now) >= total_periods
