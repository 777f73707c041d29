"""
Incident RCA - Timeframes
==========================

Named lookback windows for log queries.

Each ``Timeframe`` maps to an ``(amount, scale)`` pair; ``get_time_range``
turns it into absolute ISO-8601 start/end timestamps.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class Timeframe(str, Enum):
    LAST_5_MINUTES = "last 5 minutes"
    LAST_15_MINUTES = "last 15 minutes"
    LAST_HOUR = "last hour"
    LAST_6_HOURS = "last 6 hours"
    LAST_24_HOURS = "last 24 hours"
    LAST_3_DAYS = "last 3 days"
    LAST_7_DAYS = "last 7 days"


TIMEFRAME_VALUES: dict[Timeframe, tuple[int, str]] = {
    Timeframe.LAST_5_MINUTES: (5, "minutes"),
    Timeframe.LAST_15_MINUTES: (15, "minutes"),
    Timeframe.LAST_HOUR: (1, "hours"),
    Timeframe.LAST_6_HOURS: (6, "hours"),
    Timeframe.LAST_24_HOURS: (24, "hours"),
    Timeframe.LAST_3_DAYS: (3, "days"),
    Timeframe.LAST_7_DAYS: (7, "days"),
}

SCALES = ("seconds", "minutes", "hours", "days", "weeks")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_timestamp(
    amount: int = 0,
    scale: str = "minutes",
    now: Optional[datetime] = None,
) -> str:
    """Return the ISO-8601 UTC timestamp ``amount`` ``scale`` before ``now``."""
    if scale not in SCALES:
        raise ValueError(f"Unknown time scale: {scale}")
    now = now or _utcnow()
    return (now - timedelta(**{scale: amount})).isoformat()


def get_time_range(
    timeframe: Timeframe,
    now: Optional[datetime] = None,
) -> tuple[str, str]:
    """Return ``(start_date, end_date)`` for ``timeframe``, ending at ``now``."""
    now = now or _utcnow()
    amount, scale = TIMEFRAME_VALUES[timeframe]
    return get_timestamp(amount, scale, now=now), now.isoformat()
