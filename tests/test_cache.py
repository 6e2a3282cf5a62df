import threading

import pytest

from cache import ActivityCache, CacheKey
from conftest import ManualClock
from sweeper import BackgroundSweeper


def content_key(user_id: str, limit: int = 20) -> CacheKey:
    return CacheKey("content", user_id, (limit,))


def test_aggregate_entry_expires_after_ttl() -> None:
    clock = ManualClock()
    cache = ActivityCache(ttl=30, personalized_ttl=15, clock=clock)
    key = CacheKey("trending", None, (20,))
    cache.set(key, ["p1"])

    clock.advance(30)
    assert cache.get(key) == ["p1"]

    clock.advance(0.1)
    assert cache.get(key) is ActivityCache.MISS
    assert key not in cache
    assert cache.stats()["evictions"] == 1


def test_personalized_entry_uses_shorter_ttl() -> None:
    clock = ManualClock()
    cache = ActivityCache(ttl=30, personalized_ttl=15, clock=clock)
    cache.set(content_key("u1"), ["p1"], personalized=True)
    cache.set(CacheKey("trending", None, (20,)), ["p2"])

    clock.advance(16)
    assert cache.get(content_key("u1")) is ActivityCache.MISS
    assert cache.get(CacheKey("trending", None, (20,))) == ["p2"]


def test_insert_at_capacity_evicts_only_the_oldest_entry() -> None:
    clock = ManualClock()
    cache = ActivityCache(max_size=3, clock=clock)
    for i in range(3):
        cache.set(CacheKey("trending", None, (i,)), i)
        clock.advance(1)

    cache.set(CacheKey("trending", None, (99,)), 99)

    assert len(cache) == 3
    assert CacheKey("trending", None, (0,)) not in cache
    assert CacheKey("trending", None, (1,)) in cache
    assert CacheKey("trending", None, (99,)) in cache
    assert cache.stats()["evictions"] == 1


def test_replacing_a_key_at_capacity_does_not_evict() -> None:
    cache = ActivityCache(max_size=2, clock=ManualClock())
    cache.set(CacheKey("a"), 1)
    cache.set(CacheKey("b"), 2)
    cache.set(CacheKey("a"), 3)

    assert len(cache) == 2
    assert cache.get(CacheKey("a")) == 3


def test_invalidate_user_removes_all_and_only_that_users_entries() -> None:
    cache = ActivityCache(clock=ManualClock())
    cache.set(content_key("u1"), 1, personalized=True)
    cache.set(CacheKey("collab", "u1", (20,)), 2, personalized=True)
    cache.set(content_key("u12"), 3, personalized=True)
    cache.set(CacheKey("trending", None, (20,)), 4)

    assert cache.invalidate_user("u1") == 2

    assert cache.get(content_key("u1")) is ActivityCache.MISS
    assert cache.get(CacheKey("collab", "u1", (20,))) is ActivityCache.MISS
    assert cache.get(content_key("u12")) == 3
    assert cache.get(CacheKey("trending", None, (20,))) == 4
    assert cache.stats()["invalidations"] == 2


def test_invalidate_tag_drops_every_entry_of_that_strategy() -> None:
    cache = ActivityCache(clock=ManualClock())
    cache.set(CacheKey("collab", "u1", (20,)), 1, personalized=True)
    cache.set(CacheKey("collab", "u2", (5,)), 2, personalized=True)
    cache.set(CacheKey("trending", None, (20,)), 3)

    assert cache.invalidate_tag("collab") == 2
    assert len(cache) == 1


def test_cache_key_renders_a_readable_fingerprint() -> None:
    assert str(CacheKey("collab", "u1", (20,))) == "collab_u1_20"
    assert str(CacheKey("trending", None, (10,))) == "trending_10"


def test_rapid_repeat_activity_invalidates_the_user() -> None:
    clock = ManualClock()
    cache = ActivityCache(burst_window=5, clock=clock)
    cache.set(content_key("u1"), 1, personalized=True)

    cache.track_activity("u1")
    assert content_key("u1") in cache

    clock.advance(2)
    cache.track_activity("u1")
    assert content_key("u1") not in cache

    cache.set(content_key("u1"), 2, personalized=True)
    clock.advance(10)
    cache.track_activity("u1")
    assert content_key("u1") in cache


def test_get_or_compute_serves_hits_until_ttl_then_recomputes() -> None:
    clock = ManualClock()
    cache = ActivityCache(personalized_ttl=15, clock=clock)
    calls = []

    def compute():
        calls.append(1)
        return ("p1", "p2")

    first = cache.get_or_compute(content_key("u1"), compute, personalized=True)
    clock.advance(5)
    second = cache.get_or_compute(content_key("u1"), compute, personalized=True)
    assert first == second
    assert len(calls) == 1

    clock.advance(20)
    cache.get_or_compute(content_key("u1"), compute, personalized=True)
    assert len(calls) == 2


def test_failed_computation_leaves_no_entry() -> None:
    cache = ActivityCache(clock=ManualClock())

    def compute():
        raise RuntimeError("store down")

    with pytest.raises(RuntimeError):
        cache.get_or_compute(content_key("u1"), compute, personalized=True)
    assert content_key("u1") not in cache


def test_stats_report_hit_rate_and_reset_clears_everything() -> None:
    cache = ActivityCache(clock=ManualClock())
    cache.set(CacheKey("trending"), 1)
    cache.get(CacheKey("trending"))
    cache.get(CacheKey("missing"))
    cache.track_activity("u1")

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hitRate"] == 0.5
    assert stats["activeUsers"] == 1

    assert cache.reset() == 1
    assert cache.stats() == {
        "hits": 0,
        "misses": 0,
        "evictions": 0,
        "invalidations": 0,
        "size": 0,
        "hitRate": 0.0,
        "activeUsers": 0,
    }


def test_sweep_purges_entries_past_grace_and_idle_users() -> None:
    clock = ManualClock()
    cache = ActivityCache(ttl=30, personalized_ttl=15, clock=clock)
    cache.set(CacheKey("trending"), 1)
    cache.track_activity("u1")
    clock.advance(40)
    cache.set(content_key("u2"), 2, personalized=True)
    clock.advance(21)

    sweeper = BackgroundSweeper(cache, grace_factor=2.0, idle_horizon=61.5, stats_every=1)
    assert sweeper.sweep_once() == 1
    assert CacheKey("trending") not in cache
    assert content_key("u2") in cache
    assert cache.stats()["activeUsers"] == 1

    clock.advance(1)
    sweeper.sweep_once()
    assert cache.stats()["activeUsers"] == 0
    assert sweeper.passes == 2


def test_sweeper_thread_starts_and_stops() -> None:
    sweeper = BackgroundSweeper(ActivityCache(clock=ManualClock()), interval=0.01)
    sweeper.start()
    assert sweeper.running
    sweeper.stop(timeout=1)
    assert not sweeper.running


class LockWatchingCache(ActivityCache):
    """Records whether another thread can take the lock between sweep steps."""

    lock_free_between_steps = None

    def forget_idle_users(self, horizon: float) -> int:
        grabbed = []

        def grab():
            if self._lock.acquire(timeout=1):
                grabbed.append(True)
                self._lock.release()

        worker = threading.Thread(target=grab)
        worker.start()
        worker.join()
        self.lock_free_between_steps = bool(grabbed)
        return super().forget_idle_users(horizon)


def test_sweep_releases_the_lock_between_purge_and_forget() -> None:
    cache = LockWatchingCache(clock=ManualClock())
    cache.set(CacheKey("trending"), ["p1"])

    BackgroundSweeper(cache).sweep_once()

    assert cache.lock_free_between_steps is True


def test_invalidate_where_drops_matching_keys_only() -> None:
    cache = ActivityCache(clock=ManualClock())
    cache.set(CacheKey("guest", None, ("trending", 5)), ["p1"])
    cache.set(CacheKey("guest", None, ("new", 5)), ["p2"])

    assert cache.invalidate_where(lambda key: "trending" in key.params) == 1
    assert CacheKey("guest", None, ("trending", 5)) not in cache
    assert CacheKey("guest", None, ("new", 5)) in cache
    assert cache.stats()["invalidations"] == 1
