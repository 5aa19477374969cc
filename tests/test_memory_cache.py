from storage.memory_cache import RankingCache, RecordCache
from storage.models import RankingEntry, UserRecord


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = RecordCache(900, clock=clock)
    rec = UserRecord("1", "2", points=3)
    cache.set(rec.key, rec)
    clock.now += 899
    assert cache.get(rec.key) is rec
    clock.now += 2
    assert cache.get(rec.key) is None
    assert cache.stats["hits"] == 1
    assert cache.stats["misses"] == 1


def test_invalidate_and_invalidate_all():
    cache = RecordCache(900)
    a = UserRecord("1", "a")
    b = UserRecord("1", "b")
    cache.set(a.key, a)
    cache.set(b.key, b)
    cache.invalidate(a.key)
    assert cache.get(a.key) is None
    assert cache.get(b.key) is b
    cache.invalidate_all()
    assert cache.get(b.key) is None
    assert len(cache) == 0


def test_set_after_invalidation_is_dropped():
    cache = RecordCache(900)
    key = ("1", "2")
    seen = cache.generation(key)
    # a writer commits while the reader is still fetching
    cache.invalidate(key)
    assert cache.set(key, UserRecord("1", "2", points=1), generation=seen) is False
    assert cache.get(key) is None
    assert cache.set(key, UserRecord("1", "2", points=2), generation=cache.generation(key))
    assert cache.get(key).points == 2


def test_set_after_invalidate_all_is_dropped():
    cache = RankingCache(900)
    seen = cache.generation("g")
    cache.invalidate_all()
    assert cache.set("g", [], generation=seen) is False


def test_ranking_served_by_truncation():
    cache = RankingCache(900)
    ranking = [RankingEntry(i, str(i), f"u{i}", 100 - i) for i in range(1, 6)]
    cache.set("g", ranking)
    assert [e.rank for e in cache.get_top("g", 3)] == [1, 2, 3]
    assert len(cache.get_top("g", 25)) == 5
    assert cache.get_top("other", 3) is None
