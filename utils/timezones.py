"""Timezone helpers used to cut activity into calendar days."""
from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from config import POINTS_TZ as _POINTS_TZ_NAME

# Zone in which "today" is evaluated for streaks
POINTS_TZ = ZoneInfo(_POINTS_TZ_NAME)


def now_points() -> datetime:
    """Return current time in the points timezone."""
    return datetime.now(POINTS_TZ)


def today_points() -> date:
    """Return the current calendar date in the points timezone."""
    return now_points().date()


def utcnow() -> datetime:
    """Return an aware UTC timestamp, used for history entries."""
    return datetime.now(timezone.utc)
