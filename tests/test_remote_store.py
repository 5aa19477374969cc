import asyncio
import json
from datetime import date, datetime, timezone

import aiohttp
import pytest

from storage.errors import RemoteError, Unreachable
from storage.models import PointHistoryEntry, UserRecord
from storage.remote_store import RemoteStoreClient
from utils import metrics

URL = "https://script.example.test/exec"


class FakeResponse:
    def __init__(self, status=200, payload=None, text=None):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self, content_type=None):
        if self._text is not None:
            return json.loads(self._text)
        return self._payload

    async def text(self):
        return self._text if self._text is not None else json.dumps(self._payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    closed = False

    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


def _client(response=None, exc=None, api_key="secret"):
    session = FakeSession(response, exc)
    return RemoteStoreClient(URL, api_key, session=session), session


@pytest.mark.asyncio
async def test_get_user_record_parses_envelope():
    payload = {
        "success": True,
        "data": {
            "username": "alice",
            "points": "12",
            "lastActiveDate": "2024-03-10T00:00:00.000Z",
            "consecutiveDays": 3,
            "joinDate": "2024-01-01",
        },
    }
    client, session = _client(FakeResponse(payload=payload))
    rec = await client.get_user_record(10, 20)
    assert rec == UserRecord(
        guild_id="10",
        user_id="20",
        username="alice",
        points=12,
        last_active_date=date(2024, 3, 10),
        consecutive_days=3,
        join_date=date(2024, 1, 1),
    )
    url, kwargs = session.calls[0]
    assert url == URL
    assert kwargs["params"] == {"action": "getUserData"}
    assert kwargs["json"] == {"action": "getUserData", "params": {"guildId": "10", "userId": "20"}}
    assert kwargs["headers"]["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_missing_record_is_none():
    client, _ = _client(FakeResponse(payload={"success": True, "data": None}))
    assert await client.get_user_record("10", "20") is None


@pytest.mark.asyncio
async def test_no_api_key_sends_no_authorization():
    client, session = _client(FakeResponse(payload={"success": True}), api_key=None)
    await client.save_user_record(UserRecord("10", "20", points=3))
    _, kwargs = session.calls[0]
    assert "Authorization" not in kwargs["headers"]
    assert kwargs["json"]["params"]["userData"]["points"] == 3


@pytest.mark.asyncio
async def test_unsuccessful_envelope_is_remote_error():
    client, _ = _client(FakeResponse(payload={"success": False, "error": "Sheet locked"}))
    with pytest.raises(RemoteError, match="Sheet locked"):
        await client.save_user_record(UserRecord("10", "20"))


@pytest.mark.asyncio
async def test_http_error_status_is_remote_error():
    client, _ = _client(FakeResponse(status=502, text="Bad gateway"))
    with pytest.raises(RemoteError) as info:
        await client.get_user_record("10", "20")
    assert info.value.status == 502


@pytest.mark.asyncio
async def test_invalid_json_is_remote_error():
    client, _ = _client(FakeResponse(text="<html>Script error</html>"))
    with pytest.raises(RemoteError):
        await client.get_all_records("10")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()]
)
async def test_transport_failures_are_unreachable(exc):
    before = metrics.errors["remote.getUserData"]
    client, _ = _client(exc=exc)
    with pytest.raises(Unreachable):
        await client.get_user_record("10", "20")
    assert metrics.errors["remote.getUserData"] == before + 1


@pytest.mark.asyncio
async def test_unconfigured_endpoint_is_unreachable():
    client = RemoteStoreClient("", session=FakeSession())
    with pytest.raises(Unreachable):
        await client.get_user_record("10", "20")


@pytest.mark.asyncio
async def test_get_all_records_keeps_order():
    data = [
        {"userId": "1", "username": "a", "points": 30},
        {"userId": "2", "username": "b", "points": 50},
    ]
    client, _ = _client(FakeResponse(payload={"success": True, "data": data}))
    records = await client.get_all_records(10)
    assert [(r.guild_id, r.user_id, r.points) for r in records] == [("10", "1", 30), ("10", "2", 50)]


@pytest.mark.asyncio
async def test_append_history_payload():
    client, session = _client(FakeResponse(payload={"success": True}))
    ts = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    await client.append_history(PointHistoryEntry("10", "20", 5, 17, "bonus", ts))
    _, kwargs = session.calls[0]
    assert kwargs["params"] == {"action": "logPointsHistory"}
    assert kwargs["json"]["params"] == {
        "guildId": "10",
        "userId": "20",
        "delta": 5,
        "newTotal": 17,
        "reason": "bonus",
        "timestamp": "2024-03-10T12:00:00+00:00",
    }


@pytest.mark.asyncio
async def test_injected_session_is_not_closed():
    session = FakeSession()
    session.close = None  # would fail if called
    client = RemoteStoreClient(URL, session=session)
    await client.aclose()
    assert client.session is None
