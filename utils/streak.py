"""Daily streak arithmetic.

Pure functions: given the stored record and today's date they compute the
new record and what happened (first message, continued streak, broken
streak). Nothing here touches the stores.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Optional

from storage.models import UserRecord, record_key

BASE_ACTIVITY_POINTS = 1

# (every N days, bonus) ordered from the richest milestone down
BONUS_TIERS: tuple[tuple[int, int], ...] = ((30, 50), (7, 15), (3, 5))


@dataclass(frozen=True)
class StreakUpdate:
    record: UserRecord
    changed: bool
    base_points: int = 0
    bonus: int = 0
    is_new: bool = False
    is_decrease: bool = False

    @property
    def is_bonus(self) -> bool:
        return self.bonus > 0

    @property
    def total_delta(self) -> int:
        return self.base_points + self.bonus


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def day_difference(prev: date | datetime, curr: date | datetime) -> int:
    """Whole calendar days from ``prev`` to ``curr``; time of day is ignored."""
    return (_as_date(curr) - _as_date(prev)).days


def bonus_for(consecutive_days: int) -> int:
    """Milestone bonus for a streak length; only the richest tier pays."""
    if consecutive_days <= 0:
        return 0
    for every, bonus in BONUS_TIERS:
        if consecutive_days % every == 0:
            return bonus
    return 0


def apply_activity(
    record: Optional[UserRecord],
    today: date | datetime,
    *,
    guild_id: str | int,
    user_id: str | int,
    username: str = "",
) -> StreakUpdate:
    today = _as_date(today)

    if record is None:
        gid, uid = record_key(guild_id, user_id)
        fresh = UserRecord(
            guild_id=gid,
            user_id=uid,
            username=username,
            points=BASE_ACTIVITY_POINTS,
            last_active_date=today,
            consecutive_days=1,
            join_date=today,
        )
        return StreakUpdate(fresh, changed=True, base_points=BASE_ACTIVITY_POINTS, is_new=True)

    name = username or record.username

    # Created by an admin grant: first activity starts the streak
    if record.last_active_date is None:
        updated = replace(
            record,
            username=name,
            points=record.points + BASE_ACTIVITY_POINTS,
            last_active_date=today,
            consecutive_days=1,
            join_date=record.join_date or today,
        )
        return StreakUpdate(updated, changed=True, base_points=BASE_ACTIVITY_POINTS)

    diff = day_difference(record.last_active_date, today)
    if diff <= 0:
        return StreakUpdate(record, changed=False)

    if diff == 1:
        streak = record.consecutive_days + 1
        bonus = bonus_for(streak)
        updated = replace(
            record,
            username=name,
            points=record.points + BASE_ACTIVITY_POINTS + bonus,
            last_active_date=today,
            consecutive_days=streak,
        )
        return StreakUpdate(updated, changed=True, base_points=BASE_ACTIVITY_POINTS, bonus=bonus)

    updated = replace(
        record,
        username=name,
        points=record.points + BASE_ACTIVITY_POINTS,
        last_active_date=today,
        consecutive_days=1,
    )
    return StreakUpdate(
        updated, changed=True, base_points=BASE_ACTIVITY_POINTS, is_decrease=True
    )


__all__ = [
    "BASE_ACTIVITY_POINTS",
    "BONUS_TIERS",
    "StreakUpdate",
    "day_difference",
    "bonus_for",
    "apply_activity",
]
