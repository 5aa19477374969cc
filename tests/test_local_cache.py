import json
from datetime import date

import pytest

from storage import local_cache
from storage.errors import LocalIOError
from storage.local_cache import LocalDurableCache
from storage.models import UserRecord


def _rec(user_id, points, guild_id="10"):
    return UserRecord(
        guild_id=guild_id,
        user_id=user_id,
        username=f"user{user_id}",
        points=points,
        last_active_date=date(2024, 3, 10),
        consecutive_days=2,
        join_date=date(2024, 1, 1),
    )


@pytest.mark.asyncio
async def test_put_then_get_survives_restart(tmp_path):
    path = tmp_path / "points" / "users.json"
    cache = LocalDurableCache(path)
    await cache.put(_rec("1", 5))
    await cache.put(_rec("2", 7))
    await cache.put(_rec("1", 9))

    reopened = LocalDurableCache(path)
    got = await reopened.get(10, 1)
    assert got == _rec("1", 9)
    assert await reopened.get("10", "3") is None

    on_disk = json.loads(path.read_text())
    assert set(on_disk) == {"10:1", "10:2"}
    assert on_disk["10:1"]["lastActiveDate"] == "2024-03-10"


@pytest.mark.asyncio
async def test_records_for_guild(tmp_path):
    cache = LocalDurableCache(tmp_path / "users.json")
    await cache.put(_rec("1", 5))
    await cache.put(_rec("2", 7, guild_id="99"))
    await cache.put(_rec("3", 1))
    records = await cache.records_for_guild(10)
    assert [r.user_id for r in records] == ["1", "3"]


@pytest.mark.asyncio
async def test_corrupt_file_falls_back_to_backup(tmp_path):
    path = tmp_path / "users.json"
    cache = LocalDurableCache(path)
    await cache.put(_rec("1", 5))
    await cache.put(_rec("2", 7))
    path.write_text("{not json")
    # the backup holds the state before the last write
    assert (await cache.get("10", "1")).points == 5
    assert await cache.get("10", "2") is None


@pytest.mark.asyncio
async def test_unreadable_everything_reads_as_empty(tmp_path):
    path = tmp_path / "users.json"
    path.write_text("garbage")
    cache = LocalDurableCache(path)
    assert await cache.get("10", "1") is None
    assert await cache.records_for_guild("10") == []


@pytest.mark.asyncio
async def test_legacy_array_format_is_read(tmp_path):
    path = tmp_path / "users.json"
    path.write_text(json.dumps([_rec("1", 4).to_dict()]))
    cache = LocalDurableCache(path)
    assert (await cache.get("10", "1")).points == 4


@pytest.mark.asyncio
async def test_concurrent_puts_are_all_kept(tmp_path):
    import asyncio

    cache = LocalDurableCache(tmp_path / "users.json")
    await asyncio.gather(*(cache.put(_rec(str(i), i)) for i in range(20)))
    records = await cache.records_for_guild("10")
    assert sorted(int(r.user_id) for r in records) == list(range(20))


@pytest.mark.asyncio
async def test_write_failure_raises_local_io_error(tmp_path, monkeypatch):
    async def boom(path, data):
        raise OSError("read-only file system")

    monkeypatch.setattr(local_cache, "atomic_write_json_async", boom)
    cache = LocalDurableCache(tmp_path / "users.json")
    with pytest.raises(LocalIOError):
        await cache.put(_rec("1", 5))
