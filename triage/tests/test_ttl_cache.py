"""Tests for TTLCache."""

import pytest


class FakeMonotonic:
    def __init__(self):
        self.value = 100.0

    def __call__(self):
        return self.value


class TestTTLCache:
    def test_get_loads_once_within_ttl(self):
        from triage.common.ttl_cache import TTLCache
        clock = FakeMonotonic()
        calls = []
        cache = TTLCache(10, loader=lambda: calls.append(1) or len(calls), clock=clock)

        assert cache.get() == 1
        clock.value += 5
        assert cache.get() == 1
        assert len(calls) == 1

    def test_get_reloads_after_expiry(self):
        from triage.common.ttl_cache import TTLCache
        clock = FakeMonotonic()
        calls = []
        cache = TTLCache(10, loader=lambda: calls.append(1) or len(calls), clock=clock)

        cache.get()
        clock.value += 10
        assert cache.get() == 2

    def test_invalidate_forces_reload(self):
        from triage.common.ttl_cache import TTLCache
        calls = []
        cache = TTLCache(60, loader=lambda: calls.append(1) or len(calls))
        cache.get()
        cache.invalidate()
        assert cache.get() == 2

    def test_peek_and_put(self):
        from triage.common.ttl_cache import TTLCache
        clock = FakeMonotonic()
        cache = TTLCache(10, clock=clock)

        assert cache.peek() == (False, None)
        cache.put(False)
        assert cache.peek() == (True, False)
        clock.value += 11
        assert cache.peek() == (False, None)

    def test_get_without_loader_raises(self):
        from triage.common.ttl_cache import TTLCache
        with pytest.raises(RuntimeError):
            TTLCache(10).get()
