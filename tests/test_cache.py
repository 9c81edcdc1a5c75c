from hymem.cache import RelationshipCache, TTLCache
from hymem.config import CacheConfig


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def test_ttl_cache_lru_eviction():
    cache = TTLCache(max_size=2)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)
    assert "b" not in cache
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert cache.stats().evictions == 1


def test_ttl_cache_expiry():
    clock = FakeClock()
    cache = TTLCache(max_size=10, ttl_s=60, clock=clock)
    cache.set("k", "v")
    clock.t = 59
    assert cache.get("k") == "v"
    clock.t = 60
    assert cache.get("k") is None
    stats = cache.stats()
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.expirations == 1


def test_cleanup_expired_counts_entries():
    clock = FakeClock()
    cache = TTLCache(max_size=10, ttl_s=10, clock=clock)
    cache.set("a", 1)
    clock.t = 5
    cache.set("b", 2)
    clock.t = 12
    assert cache.cleanup_expired() == 1
    assert len(cache) == 1


def test_get_or_compute_caches_value():
    cache = TTLCache(max_size=4)
    calls = []

    def compute():
        calls.append(1)
        return 42

    assert cache.get_or_compute("x", compute) == 42
    assert cache.get_or_compute("x", compute) == 42
    assert len(calls) == 1


def test_cached_none_is_a_hit():
    cache = RelationshipCache()
    cache.put_relation("Alice", "Bob", None)
    value = cache.get_relation("Bob", "Alice")
    assert not cache.is_miss(value)
    assert value is None


def test_relationship_write_invalidates_pair_people_and_paths():
    cache = RelationshipCache(CacheConfig())
    cache.put_relation("Alice", "Bob", "edge")
    cache.put_person("Alice", ["edge"])
    cache.put_person("Bob", ["edge"])
    cache.put_person("Carol", ["other"])
    cache.put_path("Alice", "Carol", "p1")
    cache.put_path("Dave", "Bob", "p2")
    cache.put_path("Carol", "Dave", "p3")

    cache.invalidate_relationship("Bob", "Alice")

    assert cache.is_miss(cache.get_relation("Alice", "Bob"))
    assert cache.is_miss(cache.get_person("Alice"))
    assert cache.is_miss(cache.get_person("Bob"))
    assert cache.is_miss(cache.get_path("Alice", "Carol"))
    assert cache.is_miss(cache.get_path("Dave", "Bob"))
    assert cache.get_person("Carol") == ["other"]
    # Carol-Dave may route through Alice or Bob.
    assert cache.is_miss(cache.get_path("Carol", "Dave"))


def test_relationship_cache_stats_and_clear():
    cache = RelationshipCache()
    cache.put_query("q", [1])
    cache.get_query("q")
    cache.get_query("missing")
    stats = cache.stats()
    assert stats["queries"]["hits"] == 1
    assert stats["queries"]["misses"] == 1
    assert stats["hit_rate"] == 0.5
    cache.invalidate_all()
    assert cache.is_miss(cache.get_query("q"))
