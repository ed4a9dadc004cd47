"""Tests for the Redis-backed circuit breaker wiring."""
from unittest.mock import MagicMock, patch

import pybreaker

from app.services import circuit_breaker as cb_module


def _fake_redis():
    store = {}
    client = MagicMock()
    client.get.side_effect = store.get
    client.set.side_effect = lambda key, value, ex=None: store.__setitem__(key, value)
    client.incr.side_effect = lambda key: store.__setitem__(key, str(int(store.get(key, 0)) + 1))
    client.delete.side_effect = lambda key: store.pop(key, None)
    return client, store


class TestCircuitBreaker:
    def test_breaker_cached_per_name(self):
        client, _ = _fake_redis()
        with patch.object(cb_module.redis.Redis, "from_url", return_value=client), \
                patch.dict(cb_module._breakers, clear=True):
            first = cb_module.get_circuit_breaker("oxapay-test")
            second = cb_module.get_circuit_breaker("oxapay-test")

            assert first is second
            assert first.current_state == pybreaker.STATE_CLOSED

    def test_failures_counted_in_redis(self):
        client, store = _fake_redis()
        with patch.object(cb_module.redis.Redis, "from_url", return_value=client):
            storage = cb_module.RedisCircuitBreakerStorage("oxapay-test")
            storage.increment_counter()
            storage.increment_counter()
            assert storage.counter == 2
            storage.reset_counter()
            assert storage.counter == 0
            storage.state = pybreaker.STATE_OPEN
            assert store["cb:oxapay-test:state"] == pybreaker.STATE_OPEN
