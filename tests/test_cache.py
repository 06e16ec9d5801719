"""Tests for the TTL/LRU cache."""

import threading

from repodb.cache import Cache, Region


class TestCache:
    def test_miss_then_hit(self, cache):
        assert cache.get(Region.THREADS, "alice") is None
        cache.set(Region.THREADS, "alice", ["t1"])
        assert cache.get(Region.THREADS, "alice") == ["t1"]

        stats = cache.stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.entries["threads"] == 1

    def test_regions_are_independent(self, cache):
        cache.set(Region.MESSAGES, "t1", ["m1"])
        assert cache.get(Region.THREAD_DETAIL, "t1") is None
        assert cache.get(Region.MESSAGES, "t1") == ["m1"]

    def test_ttl_per_region(self, cache, clock):
        cache.set(Region.THREADS, "alice", ["t1"])
        cache.set(Region.MESSAGES, "t1", ["m1"])

        clock.advance(301)
        assert cache.get(Region.MESSAGES, "t1") is None  # 300s TTL
        assert cache.get(Region.THREADS, "alice") == ["t1"]  # 600s TTL

        clock.advance(300)
        assert cache.get(Region.THREADS, "alice") is None
        assert cache.stats().expirations == 2

    def test_set_overwrites_and_refreshes(self, cache, clock):
        cache.set(Region.MESSAGES, "t1", ["m1"])
        clock.advance(200)
        cache.set(Region.MESSAGES, "t1", ["m1", "m2"])
        clock.advance(200)
        assert cache.get(Region.MESSAGES, "t1") == ["m1", "m2"]

    def test_optimistic_mutation_keeps_age(self, cache, clock):
        cache.set(Region.MESSAGES, "t1", ["m1"])
        clock.advance(200)
        assert cache.apply_optimistic(Region.MESSAGES, "t1", lambda ms: ms + ["m2"]) is True
        assert cache.get(Region.MESSAGES, "t1") == ["m1", "m2"]

        clock.advance(101)
        assert cache.get(Region.MESSAGES, "t1") is None

    def test_optimistic_without_entry_is_reported(self, cache, clock):
        assert cache.apply_optimistic(Region.MESSAGES, "t1", lambda ms: ms + ["m2"]) is False
        assert cache.get(Region.MESSAGES, "t1") is None

        cache.set(Region.MESSAGES, "t1", ["m1"])
        clock.advance(301)
        assert cache.apply_optimistic(Region.MESSAGES, "t1", lambda ms: ms + ["m2"]) is False

    def test_lru_eviction(self, cache):
        for key in ["a", "b", "c"]:
            cache.set(Region.MESSAGES, key, [key])
        cache.get(Region.MESSAGES, "a")  # a is now most recent
        cache.set(Region.MESSAGES, "d", ["d"])

        assert cache.get(Region.MESSAGES, "b") is None
        assert cache.get(Region.MESSAGES, "a") == ["a"]
        assert cache.stats().evictions == 1
        assert cache.stats().entries["messages"] == 3

    def test_invalidate(self, cache):
        cache.set(Region.THREADS, "alice", [])
        cache.set(Region.MESSAGES, "t1", [])
        cache.set(Region.MESSAGES, "t2", [])

        cache.invalidate(Region.MESSAGES, "t1")
        cache.invalidate(Region.MESSAGES, "missing")
        assert cache.get(Region.MESSAGES, "t1") is None
        assert cache.get(Region.MESSAGES, "t2") == []

        cache.invalidate_all(Region.MESSAGES)
        assert cache.get(Region.MESSAGES, "t2") is None
        assert cache.get(Region.THREADS, "alice") == []

        cache.invalidate_all()
        assert cache.stats().entries == {"threads": 0, "messages": 0, "thread_detail": 0}

    def test_concurrent_writers(self):
        cache = Cache({Region.MESSAGES: 60}, max_entries=1000)
        cache.set(Region.MESSAGES, "t1", [])

        def worker(n: int) -> None:
            for i in range(100):
                cache.apply_optimistic(Region.MESSAGES, "t1", lambda ms: ms + [(n, i)])

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache.get(Region.MESSAGES, "t1")) == 400
