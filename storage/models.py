"""Value types shared by the point stores and the ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

RecordKey = Tuple[str, str]


def record_key(guild_id: Any, user_id: Any) -> RecordKey:
    """Normalise Discord snowflakes (int or str) into a ``(guild, user)`` key."""
    return str(guild_id), str(user_id)


def _parse_date(value: Any) -> Optional[date]:
    # The sheet sometimes hands back full ISO timestamps
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _parse_int(value: Any, default: int = 0) -> int:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


@dataclass
class UserRecord:
    guild_id: str
    user_id: str
    username: str = ""
    points: int = 0
    last_active_date: Optional[date] = None
    consecutive_days: int = 0
    join_date: Optional[date] = None

    @property
    def key(self) -> RecordKey:
        return record_key(self.guild_id, self.user_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guildId": self.guild_id,
            "userId": self.user_id,
            "username": self.username,
            "points": self.points,
            "lastActiveDate": self.last_active_date.isoformat() if self.last_active_date else None,
            "consecutiveDays": self.consecutive_days,
            "joinDate": self.join_date.isoformat() if self.join_date else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserRecord":
        guild_id, user_id = record_key(data.get("guildId", ""), data.get("userId", ""))
        return cls(
            guild_id=guild_id,
            user_id=user_id,
            username=str(data.get("username") or ""),
            points=_parse_int(data.get("points")),
            last_active_date=_parse_date(data.get("lastActiveDate")),
            consecutive_days=max(0, _parse_int(data.get("consecutiveDays"))),
            join_date=_parse_date(data.get("joinDate")),
        )


@dataclass(frozen=True)
class PointHistoryEntry:
    guild_id: str
    user_id: str
    delta: int
    new_total: int
    reason: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guildId": self.guild_id,
            "userId": self.user_id,
            "delta": self.delta,
            "newTotal": self.new_total,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class RankingEntry:
    rank: int
    user_id: str
    username: str
    points: int


@dataclass
class ActivityResult:
    success: bool = True
    points_changed: bool = False
    points: int = 0
    consecutive_days: int = 0
    is_bonus: bool = False
    is_decrease: bool = False
    bonus: int = 0
    is_new: bool = False
    error: Optional[str] = None


@dataclass
class AdjustResult:
    success: bool
    previous_total: int = 0
    new_total: int = 0
    error: Optional[str] = None


@dataclass
class BalanceResult:
    success: bool
    points: int = 0
    consecutive_days: int = 0
    found: bool = False
    error: Optional[str] = None


@dataclass
class RankingResult:
    """Ranking plus how it was obtained.

    ``degraded`` means the remote store failed and the entries come from the
    local file, which only knows members this process has written.
    """

    success: bool
    entries: List[RankingEntry] = field(default_factory=list)
    degraded: bool = False
    error: Optional[str] = None


@dataclass
class Lookup:
    """Outcome of walking the read chain for one key.

    ``source`` names the store that gave a definitive answer (``None`` when
    every store failed); ``record`` is ``None`` for a definitive "not found".
    """

    record: Optional[UserRecord] = None
    source: Optional[str] = None
    failures: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.source is not None

    def describe_failures(self) -> str:
        return "; ".join(f"{name}: {exc}" for name, exc in self.failures)


__all__ = [
    "RecordKey",
    "record_key",
    "UserRecord",
    "PointHistoryEntry",
    "RankingEntry",
    "ActivityResult",
    "AdjustResult",
    "BalanceResult",
    "RankingResult",
    "Lookup",
]
