"""Tests for TTLCache with an injected clock."""
import pytest

from app.services.cache import TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestTTLCache:
    def test_get_before_and_after_expiry(self, clock):
        cache = TTLCache(max_size=10, default_ttl=60, clock=clock)
        cache.set("posts:latest", [1, 2])

        clock.advance(59)
        assert cache.get("posts:latest") == [1, 2]
        clock.advance(1)
        assert cache.get("posts:latest") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self, clock):
        cache = TTLCache(max_size=10, default_ttl=60, clock=clock)
        cache.set("short", "a", ttl=5)
        cache.set("long", "b")

        clock.advance(10)

        assert cache.get("short") is None
        assert cache.get("long") == "b"

    def test_evicts_oldest_at_capacity(self, clock):
        cache = TTLCache(max_size=2, default_ttl=60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_overwrite_does_not_evict(self, clock):
        cache = TTLCache(max_size=2, default_ttl=60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.get("a") == 10
        assert cache.get("b") == 2

    def test_invalidate_prefix(self, clock):
        cache = TTLCache(max_size=10, default_ttl=60, clock=clock)
        cache.set("posts:latest:None:1:30", "p1")
        cache.set("posts:views:vip:1:30", "p2")
        cache.set("users:1", "u")

        removed = cache.invalidate_prefix("posts:")

        assert removed == 2
        assert cache.get("users:1") == "u"
        assert cache.get("posts:latest:None:1:30") is None

    def test_cleanup_removes_only_expired(self, clock):
        cache = TTLCache(max_size=10, default_ttl=60, clock=clock)
        cache.set("old", 1, ttl=1)
        cache.set("fresh", 2)
        clock.advance(5)

        assert cache.cleanup() == 1
        assert cache.stats()["size"] == 1

    def test_get_or_set_calls_factory_once(self, clock):
        cache = TTLCache(max_size=10, default_ttl=60, clock=clock)
        calls = []

        def factory():
            calls.append(1)
            return {"posts": []}

        assert cache.get_or_set("k", factory) == {"posts": []}
        assert cache.get_or_set("k", factory) == {"posts": []}
        assert len(calls) == 1

    def test_caches_falsy_values(self, clock):
        cache = TTLCache(max_size=10, default_ttl=60, clock=clock)
        calls = []
        cache.get_or_set("empty", lambda: calls.append(1) or [])
        cache.get_or_set("empty", lambda: calls.append(1) or [])
        assert len(calls) == 1

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            TTLCache(max_size=0)
