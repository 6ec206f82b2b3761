"""In-memory result cache and cache keys."""

import redis

from catalog_search.cache import InMemoryCache, RedisCache, cache_key, create_cache
from catalog_search.config import Settings
from catalog_search.models import SearchRequest


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = Ticker()
    cache = InMemoryCache(clock=clock)
    cache.set("k", {"total": 1}, ttl=30)

    clock.now = 29.9
    assert cache.get("k") == {"total": 1}
    clock.now = 30.0
    assert cache.get("k") is None


def test_oldest_entry_is_evicted():
    cache = InMemoryCache(max_entries=2, clock=Ticker())
    cache.set("a", {"n": 1}, ttl=60)
    cache.set("b", {"n": 2}, ttl=60)
    cache.set("c", {"n": 3}, ttl=60)

    assert cache.get("a") is None
    assert cache.get("c") == {"n": 3}


def test_cache_key_depends_on_result_shaping_params_only():
    base = cache_key(SearchRequest(q="кабель", page=2, limit=10))

    assert base == cache_key(SearchRequest(q="кабель", page=2, limit=10, city_id=5, user_id="u1"))
    assert base != cache_key(SearchRequest(q="кабель", page=3, limit=10))
    assert base != cache_key(SearchRequest(q="кабель", page=2, limit=10, sort="name"))


class BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("down")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("down")


def test_redis_errors_read_as_misses():
    cache = RedisCache(BrokenRedis())

    cache.set("k", {"total": 1}, ttl=30)
    assert cache.get("k") is None


def test_disabled_cache_is_none():
    assert create_cache(Settings(cache_enabled=False)) is None
