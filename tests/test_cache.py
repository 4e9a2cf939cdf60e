"""
Tests for the in-process TTL cache.
"""
import pytest
from config import cache


@pytest.fixture(autouse=True)
def empty_cache():
    cache.clear_cache()
    yield
    cache.clear_cache()


class TestCache:
    def test_set_and_get(self):
        cache.set_cache("appointment:1", {"id": "1"})
        assert cache.get_cache("appointment:1") == {"id": "1"}

    def test_missing_key(self):
        assert cache.get_cache("appointment:404") is None

    def test_expired_entry_is_dropped(self, mocker):
        clock = mocker.patch("config.cache.time.time", return_value=1000.0)
        cache.set_cache("reports:list", [])

        clock.return_value = 1000.0 + cache.CACHE_TTL + 1
        assert cache.get_cache("reports:list") is None
        assert "reports:list" not in cache.custom_cache

    def test_delete(self):
        cache.set_cache("report:1", {})
        assert cache.delete_cache("report:1") is True
        assert cache.delete_cache("report:1") is False

    def test_delete_by_pattern(self):
        cache.set_cache("appointments:upcoming", [])
        cache.set_cache("appointments:today", [])
        cache.set_cache("appointment:1", {})

        assert cache.delete_cache_by_pattern("appointments:*") == 2
        assert cache.get_cache("appointment:1") == {}
