"""Point ledger: the only component that changes a member's balance.

Every mutation is a read-modify-write cycle over the caches and the stores:

1. read the record (memory cache, then remote store, then local file),
2. compute the new record (streak rules or an administrative delta),
3. save it remotely and mirror it into the local file,
4. invalidate the record and ranking caches,
5. append history rows in the background.

Steps 1-4 run inside a per-``(guild_id, user_id)`` lock so two events for
the same member can never overwrite each other's result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import date
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Set, Tuple

import config
from storage.errors import LocalIOError, StoreError
from storage.local_cache import LocalDurableCache
from storage.memory_cache import RankingCache, RecordCache
from storage.models import (
    ActivityResult,
    AdjustResult,
    BalanceResult,
    Lookup,
    PointHistoryEntry,
    RankingEntry,
    RankingResult,
    RecordKey,
    UserRecord,
    record_key,
)
from storage.remote_store import RemoteStoreClient
from utils.locks import KeyedLock
from utils.streak import apply_activity
from utils.timezones import today_points, utcnow

logger = logging.getLogger(__name__)

REASON_FIRST_MESSAGE = "Premier message"
REASON_DAILY_MESSAGE = "Message quotidien"
REASON_STREAK_BONUS = "Bonus de série : jour {days}"
REASON_ADMIN_ADJUST = "Ajustement par un administrateur"
REASON_EVENT = "Événement : {name}"

Fetch = Callable[[str, str], Awaitable[Optional[UserRecord]]]


class PersistError(StoreError):
    """Neither the remote store nor the local file accepted a write."""


class PointLedger:
    """Orchestrates reads, writes and cache invalidation for point records."""

    def __init__(
        self,
        remote: RemoteStoreClient,
        local: LocalDurableCache,
        records: RecordCache,
        rankings: RankingCache,
        *,
        today: Callable[[], date] = today_points,
    ) -> None:
        self.remote = remote
        self.local = local
        self.records = records
        self.rankings = rankings
        self._today = today
        self._locks = KeyedLock()
        self._history_tasks: Set[asyncio.Task] = set()
        self._divergent: Set[RecordKey] = set()

    # ── Read chain ──────────────────────────────────────────
    def _sources(self, key: RecordKey) -> Sequence[Tuple[str, Fetch]]:
        remote = ("remote", self.remote.get_user_record)
        local = ("local", self.local.get)
        # The local file holds the newest write until the remote catches up
        if key in self._divergent:
            return (local, remote)
        return (remote, local)

    async def _lookup(self, key: RecordKey) -> Lookup:
        cached = self.records.get(key)
        if cached is not None:
            return Lookup(record=cached, source="memory")

        generation = self.records.generation(key)
        lookup = Lookup()
        for name, fetch in self._sources(key):
            try:
                record = await fetch(*key)
            except StoreError as exc:
                logger.warning("[points] %s read failed for %s:%s: %s", name, *key, exc)
                lookup.failures.append((name, exc))
                continue
            if record is None and name == "local":
                if key in self._divergent:
                    continue
                # A local miss is not definitive while the remote store is down
                if any(source == "remote" for source, _ in lookup.failures):
                    lookup.failures.append(("local", "no local copy"))
                    continue
            lookup.record = record
            lookup.source = name
            if record is not None and name == "remote":
                self.records.set(key, record, generation=generation)
            if lookup.failures:
                logger.info("[points] %s:%s served from %s", *key, name)
            return lookup

        logger.error(
            "[points] no store could read %s:%s (%s)", *key, lookup.describe_failures()
        )
        return lookup

    # ── Write path ──────────────────────────────────────────
    async def _persist(self, record: UserRecord) -> str:
        """Save ``record`` remotely and mirror it locally.

        Returns ``"remote"`` or ``"local"`` depending on where the write
        landed; raises :class:`PersistError` when it landed nowhere.
        """
        key = record.key
        remote_error: Optional[StoreError] = None
        try:
            await self.remote.save_user_record(record)
        except StoreError as exc:
            remote_error = exc
            logger.warning("[points] remote save failed for %s:%s: %s", *key, exc)

        try:
            await self.local.put(record)
        except LocalIOError as exc:
            if remote_error is not None:
                raise PersistError(f"remote: {remote_error}; local: {exc}") from exc
            logger.error("[points] local mirror failed for %s:%s: %s", *key, exc)

        if remote_error is not None:
            if key not in self._divergent:
                logger.warning(
                    "[points] %s:%s accepted locally only; remote copy is now stale", *key
                )
            self._divergent.add(key)
            return "local"

        if key in self._divergent:
            self._divergent.discard(key)
            logger.info("[points] %s:%s remote copy caught up", *key)
        return "remote"

    def _invalidate(self, record: UserRecord) -> None:
        self.records.invalidate(record.key)
        self.rankings.invalidate(record.guild_id)

    def divergent_keys(self) -> Set[RecordKey]:
        """Keys whose latest write only reached the local file."""
        return set(self._divergent)

    # ── History (fire-and-forget) ───────────────────────────
    def _emit_history(self, entries: Iterable[PointHistoryEntry]) -> None:
        entries = list(entries)
        if not entries:
            return
        task = asyncio.create_task(self._append_history(entries), name="points_history")
        self._history_tasks.add(task)
        task.add_done_callback(self._handle_history_task_result)

    async def _append_history(self, entries: List[PointHistoryEntry]) -> None:
        for entry in entries:
            try:
                await self.remote.append_history(entry)
            except Exception:
                logger.exception(
                    "[points] history append failed for %s:%s (%+d, %s)",
                    entry.guild_id,
                    entry.user_id,
                    entry.delta,
                    entry.reason,
                )

    def _handle_history_task_result(self, task: asyncio.Task) -> None:
        self._history_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:  # pragma: no cover - _append_history logs per entry
            logger.error("[points] history task crashed: %s", exc)

    async def drain_history(self) -> None:
        """Wait for pending history appends."""
        while self._history_tasks:
            await asyncio.gather(*list(self._history_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain_history()
        await self.remote.aclose()

    # ── Reads ───────────────────────────────────────────────
    async def get_profile(self, guild_id: Any, user_id: Any) -> BalanceResult:
        lookup = await self._lookup(record_key(guild_id, user_id))
        if not lookup.ok:
            return BalanceResult(success=False, error=lookup.describe_failures())
        record = lookup.record
        if record is None:
            return BalanceResult(success=True)
        return BalanceResult(
            success=True,
            points=record.points,
            consecutive_days=record.consecutive_days,
            found=True,
        )

    async def get_balance(self, guild_id: Any, user_id: Any) -> int:
        return (await self.get_profile(guild_id, user_id)).points

    async def get_consecutive_days(self, guild_id: Any, user_id: Any) -> int:
        return (await self.get_profile(guild_id, user_id)).consecutive_days

    # ── Mutations ───────────────────────────────────────────
    async def record_activity(
        self,
        guild_id: Any,
        user_id: Any,
        username: str = "",
        today: Optional[date] = None,
    ) -> ActivityResult:
        """Count one day of activity for a member (message, reaction...)."""
        key = record_key(guild_id, user_id)
        today = today or self._today()
        async with self._locks.hold(key):
            lookup = await self._lookup(key)
            if not lookup.ok:
                return ActivityResult(success=False, error=lookup.describe_failures())

            update = apply_activity(
                lookup.record, today, guild_id=key[0], user_id=key[1], username=username
            )
            record = update.record
            if not update.changed:
                return ActivityResult(
                    points=record.points, consecutive_days=record.consecutive_days
                )

            try:
                await self._persist(record)
            except PersistError as exc:
                logger.error("[points] activity for %s:%s lost: %s", *key, exc)
                previous = lookup.record
                return ActivityResult(
                    success=False,
                    points=previous.points if previous else 0,
                    consecutive_days=previous.consecutive_days if previous else 0,
                    error=str(exc),
                )
            self._invalidate(record)

        base_total = record.points - update.bonus
        history = [
            PointHistoryEntry(
                guild_id=key[0],
                user_id=key[1],
                delta=update.base_points,
                new_total=base_total,
                reason=REASON_FIRST_MESSAGE if update.is_new else REASON_DAILY_MESSAGE,
                timestamp=utcnow(),
            )
        ]
        if update.is_bonus:
            history.append(
                PointHistoryEntry(
                    guild_id=key[0],
                    user_id=key[1],
                    delta=update.bonus,
                    new_total=record.points,
                    reason=REASON_STREAK_BONUS.format(days=record.consecutive_days),
                    timestamp=utcnow(),
                )
            )
        self._emit_history(history)

        logger.info(
            "[points] %s:%s activity -> %d pts, streak %d%s%s",
            *key,
            record.points,
            record.consecutive_days,
            f", bonus +{update.bonus}" if update.is_bonus else "",
            ", streak reset" if update.is_decrease else "",
        )
        return ActivityResult(
            points_changed=True,
            points=record.points,
            consecutive_days=record.consecutive_days,
            is_bonus=update.is_bonus,
            is_decrease=update.is_decrease,
            bonus=update.bonus,
            is_new=update.is_new,
        )

    async def adjust_points(
        self,
        guild_id: Any,
        user_id: Any,
        delta: int,
        reason: Optional[str] = None,
        *,
        username: str = "",
    ) -> AdjustResult:
        """Administrative change of a balance; ``delta`` may be negative."""
        key = record_key(guild_id, user_id)
        reason = reason or REASON_ADMIN_ADJUST
        async with self._locks.hold(key):
            lookup = await self._lookup(key)
            if not lookup.ok:
                return AdjustResult(success=False, error=lookup.describe_failures())

            current = lookup.record
            if current is None:
                current = UserRecord(
                    guild_id=key[0],
                    user_id=key[1],
                    username=username,
                    join_date=self._today(),
                )
            previous_total = current.points
            record = replace(
                current,
                username=username or current.username,
                points=previous_total + int(delta),
            )
            try:
                await self._persist(record)
            except PersistError as exc:
                logger.error("[points] adjustment for %s:%s not applied: %s", *key, exc)
                return AdjustResult(
                    success=False,
                    previous_total=previous_total,
                    new_total=previous_total,
                    error=str(exc),
                )
            self._invalidate(record)

        self._emit_history(
            [
                PointHistoryEntry(
                    guild_id=key[0],
                    user_id=key[1],
                    delta=int(delta),
                    new_total=record.points,
                    reason=reason,
                    timestamp=utcnow(),
                )
            ]
        )
        logger.info(
            "[points] %s:%s adjusted %+d (%s): %d -> %d",
            *key,
            int(delta),
            reason,
            previous_total,
            record.points,
        )
        return AdjustResult(success=True, previous_total=previous_total, new_total=record.points)

    async def add_event_bonus(
        self,
        guild_id: Any,
        user_id: Any,
        username: str,
        points: int,
        event_name: str,
    ) -> AdjustResult:
        """Grant an event participation bonus; the streak is left untouched."""
        result = await self.adjust_points(
            guild_id,
            user_id,
            points,
            REASON_EVENT.format(name=event_name),
            username=username,
        )
        if result.success:
            try:
                await self.remote.log_event_participation(guild_id, user_id, event_name, points)
            except StoreError as exc:
                logger.warning("[points] event participation not logged: %s", exc)
        return result

    # ── Ranking ─────────────────────────────────────────────
    @staticmethod
    def build_ranking(records: Iterable[UserRecord]) -> List[RankingEntry]:
        # sorted() is stable: ties keep the order in which records were seen
        ordered = sorted(records, key=lambda r: r.points, reverse=True)
        return [
            RankingEntry(rank=i, user_id=r.user_id, username=r.username, points=r.points)
            for i, r in enumerate(ordered, start=1)
        ]

    async def _with_local_writes(self, gid: str, records: List[UserRecord]) -> List[UserRecord]:
        """Replace remote rows that are older than a locally accepted write."""
        pending = {key for key in self._divergent if key[0] == gid}
        if not pending:
            return records
        merged: List[UserRecord] = []
        for record in records:
            if record.key in pending:
                pending.discard(record.key)
                record = await self._local_copy(record.key) or record
            merged.append(record)
        for key in sorted(pending):
            local = await self._local_copy(key)
            if local is not None:
                merged.append(local)
        return merged

    async def _local_copy(self, key: RecordKey) -> Optional[UserRecord]:
        try:
            return await self.local.get(*key)
        except LocalIOError as exc:
            logger.warning("[points] local copy of %s:%s unreadable: %s", *key, exc)
            return None

    async def get_ranking_report(self, guild_id: Any, limit: int = 10) -> RankingResult:
        """Ranking with its provenance, for callers that must tell an empty
        guild apart from an unavailable store."""
        gid = str(guild_id)
        cached = self.rankings.get_top(gid, limit)
        if cached is not None:
            return RankingResult(success=True, entries=cached)

        generation = self.rankings.generation(gid)
        try:
            records = await self.remote.get_all_records(gid)
        except StoreError as exc:
            records = await self.local.records_for_guild(gid)
            if not records:
                logger.error("[points] ranking for %s unavailable: %s", gid, exc)
                return RankingResult(success=False, error=f"remote: {exc}; local: empty")
            logger.warning("[points] ranking for %s served from local cache: %s", gid, exc)
            return RankingResult(
                success=True, entries=self.build_ranking(records)[:limit], degraded=True
            )

        ranking = self.build_ranking(await self._with_local_writes(gid, records))
        self.rankings.set(gid, ranking, generation=generation)
        return RankingResult(success=True, entries=ranking[:limit])

    async def get_ranking(self, guild_id: Any, limit: int = 10) -> List[RankingEntry]:
        return (await self.get_ranking_report(guild_id, limit)).entries


def create_ledger() -> PointLedger:
    """Build a ledger wired to the configured stores."""
    return PointLedger(
        RemoteStoreClient(
            config.POINTS_API_URL,
            config.POINTS_API_KEY,
            timeout=config.POINTS_API_TIMEOUT_SECONDS,
        ),
        LocalDurableCache(config.POINTS_CACHE_FILE),
        RecordCache(config.RECORD_CACHE_TTL_SECONDS),
        RankingCache(config.RANKING_CACHE_TTL_SECONDS),
    )


__all__ = [
    "PointLedger",
    "PersistError",
    "create_ledger",
    "REASON_FIRST_MESSAGE",
    "REASON_DAILY_MESSAGE",
    "REASON_STREAK_BONUS",
    "REASON_ADMIN_ADJUST",
    "REASON_EVENT",
]
