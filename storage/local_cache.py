from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import POINTS_CACHE_FILE
from storage.errors import LocalIOError
from storage.models import UserRecord, record_key
from utils.persistence import atomic_write_json_async, ensure_dir, read_json_safe

logger = logging.getLogger(__name__)


def _entry_key(guild_id: Any, user_id: Any) -> str:
    gid, uid = record_key(guild_id, user_id)
    return f"{gid}:{uid}"


class LocalDurableCache:
    """JSON-backed copy of the user records that survives restarts.

    The file holds a single object keyed by ``"<guild_id>:<user_id>"``. It is
    only read when the remote store cannot answer, and rewritten (atomically)
    after every save so the fallback stays as fresh as the last write.
    Mutations are serialized with an :class:`asyncio.Lock`.
    """

    def __init__(self, path: Path | str = POINTS_CACHE_FILE) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> Dict[str, Dict[str, Any]]:
        data = read_json_safe(self.path, {})
        if isinstance(data, list):
            # Older dumps were a plain array of records
            converted: Dict[str, Dict[str, Any]] = {}
            for item in data:
                if isinstance(item, dict):
                    converted[_entry_key(item.get("guildId"), item.get("userId"))] = item
            return converted
        if not isinstance(data, dict):
            logger.warning("Unexpected payload in %s; ignoring it", self.path)
            return {}
        return data

    async def _load(self) -> Dict[str, Dict[str, Any]]:
        return await asyncio.to_thread(self._read_all)

    async def get(self, guild_id: Any, user_id: Any) -> Optional[UserRecord]:
        data = await self._load()
        raw = data.get(_entry_key(guild_id, user_id))
        if not isinstance(raw, dict):
            return None
        return UserRecord.from_dict(raw)

    async def records_for_guild(self, guild_id: Any) -> List[UserRecord]:
        gid = str(guild_id)
        data = await self._load()
        out: List[UserRecord] = []
        for raw in data.values():
            if isinstance(raw, dict) and str(raw.get("guildId")) == gid:
                out.append(UserRecord.from_dict(raw))
        return out

    async def put(self, record: UserRecord) -> None:
        """Insert or replace ``record`` and rewrite the file atomically."""
        async with self._lock:
            data = await self._load()
            data[_entry_key(record.guild_id, record.user_id)] = record.to_dict()
            try:
                ensure_dir(self.path.parent)
                await atomic_write_json_async(self.path, data)
            except OSError as exc:
                raise LocalIOError(f"cannot write {self.path}: {exc}") from exc


__all__ = ["LocalDurableCache"]
