"""Client for the spreadsheet-backed points API.

One method per remote action, one HTTP round-trip per call. No caching and
no retries here: the ledger decides what to do when a call fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from storage.errors import RemoteError, Unreachable
from storage.models import PointHistoryEntry, UserRecord, record_key
from utils.metrics import measure

logger = logging.getLogger(__name__)


class RemoteStoreClient:
    """Thin RPC wrapper around the remote store.

    Requests are ``POST <base_url>?action=<name>`` with a JSON body
    ``{"action": name, "params": {...}}``; answers are the envelope
    ``{"success": bool, "data": ..., "error": str}``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": "PointsBot/1.0 (+discord)"},
            )
            self._owns_session = True
        return self.session

    async def aclose(self) -> None:
        if self.session is not None and self._owns_session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def _call(self, action: str, params: Dict[str, Any]) -> Any:
        if not self.base_url:
            raise Unreachable(action, "no endpoint configured")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        session = self._get_session()
        with measure(f"remote.{action}"):
            try:
                async with session.post(
                    self.base_url,
                    params={"action": action},
                    json={"action": action, "params": params},
                    headers=headers,
                ) as resp:
                    if not 200 <= resp.status < 300:
                        body = await resp.text()
                        raise RemoteError(action, body[:200], status=resp.status)
                    try:
                        payload = await resp.json(content_type=None)
                    except (json.JSONDecodeError, ValueError) as exc:
                        raise RemoteError(action, f"invalid JSON: {exc}", status=resp.status) from exc
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as exc:
                raise Unreachable(action, str(exc) or type(exc).__name__) from exc
            except aiohttp.ClientError as exc:
                raise RemoteError(action, str(exc) or type(exc).__name__) from exc

        if not isinstance(payload, dict):
            raise RemoteError(action, "envelope is not an object")
        if payload.get("success") is not True:
            raise RemoteError(action, str(payload.get("error") or "success flag not set"))
        logger.debug("remote %s ok", action)
        return payload.get("data")

    # ── Actions ─────────────────────────────────────────────
    async def get_user_record(self, guild_id: Any, user_id: Any) -> Optional[UserRecord]:
        gid, uid = record_key(guild_id, user_id)
        data = await self._call("getUserData", {"guildId": gid, "userId": uid})
        if not data:
            return None
        if not isinstance(data, dict):
            raise RemoteError("getUserData", "record is not an object")
        record = UserRecord.from_dict({"guildId": gid, "userId": uid, **data})
        return record

    async def save_user_record(self, record: UserRecord) -> None:
        await self._call(
            "saveUserData",
            {"guildId": record.guild_id, "userId": record.user_id, "userData": record.to_dict()},
        )

    async def append_history(self, entry: PointHistoryEntry) -> None:
        await self._call("logPointsHistory", entry.to_dict())

    async def get_all_records(self, guild_id: Any) -> List[UserRecord]:
        gid = str(guild_id)
        data = await self._call("getAllUsers", {"guildId": gid})
        if data is None:
            return []
        if not isinstance(data, list):
            raise RemoteError("getAllUsers", "user list is not an array")
        return [
            UserRecord.from_dict({"guildId": gid, **item})
            for item in data
            if isinstance(item, dict)
        ]

    async def log_event_participation(
        self, guild_id: Any, user_id: Any, event_name: str, points: int
    ) -> None:
        gid, uid = record_key(guild_id, user_id)
        await self._call(
            "logEventParticipation",
            {"guildId": gid, "userId": uid, "eventName": event_name, "points": points},
        )


__all__ = ["RemoteStoreClient"]
