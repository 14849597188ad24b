"""
Tests for the public feed page cache.
"""
import asyncio

from mobile_feed_service.cache import RedisCache
from mobile_feed_service.config import settings

PARAMS = {"page": 1, "limit": 20, "feedType": "latest", "category": None, "sortBy": "createdAt"}


class InMemoryRedis:
    """Just enough of redis.asyncio.Redis for the cache"""

    def __init__(self, fail=False):
        self.store = {}
        self.expiry = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.store[key] = value
        self.expiry[key] = ex
        return True

    async def ping(self):
        if self.fail:
            raise ConnectionError("redis down")
        return True


def _cache(client):
    cache = RedisCache()
    cache.client = client
    return cache


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def test_feed_key_ignores_parameter_order():
    cache = RedisCache()
    reordered = dict(reversed(list(PARAMS.items())))

    assert cache._feed_key(PARAMS) == cache._feed_key(reordered)
    assert cache._feed_key(PARAMS).startswith("feed:public:")


def test_feed_key_changes_with_any_parameter():
    cache = RedisCache()

    assert cache._feed_key(PARAMS) != cache._feed_key({**PARAMS, "page": 2})
    assert cache._feed_key(PARAMS) != cache._feed_key({**PARAMS, "category": "food"})


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------

def test_set_then_get_returns_the_body():
    client = InMemoryRedis()
    cache = _cache(client)
    body = {"posts": [{"id": "p1", "type": "post"}], "pagination": {"total": 1}}

    assert asyncio.run(cache.set_feed_page(PARAMS, body)) is True
    assert asyncio.run(cache.get_feed_page(PARAMS)) == body
    assert client.expiry[cache._feed_key(PARAMS)] == settings.FEED_CACHE_TTL


def test_explicit_ttl_is_used():
    client = InMemoryRedis()
    cache = _cache(client)

    asyncio.run(cache.set_feed_page(PARAMS, {}, ttl=120))

    assert client.expiry[cache._feed_key(PARAMS)] == 120


def test_miss_returns_none():
    assert asyncio.run(_cache(InMemoryRedis()).get_feed_page(PARAMS)) is None


# ---------------------------------------------------------------------------
# Degraded
# ---------------------------------------------------------------------------

def test_redis_errors_degrade_to_cache_miss():
    cache = _cache(InMemoryRedis(fail=True))

    assert asyncio.run(cache.get_feed_page(PARAMS)) is None
    assert asyncio.run(cache.set_feed_page(PARAMS, {"posts": []})) is False
    assert asyncio.run(cache.ping()) is False


def test_unconnected_cache_is_unavailable():
    cache = RedisCache()

    assert cache.available is False
    assert asyncio.run(cache.get_feed_page(PARAMS)) is None
    assert asyncio.run(cache.set_feed_page(PARAMS, {})) is False
    assert asyncio.run(cache.ping()) is False
