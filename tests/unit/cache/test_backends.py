"""
Unit tests for the versioned cache backends
"""

import pytest
from fakeredis.aioredis import FakeRedis

from app.cache import MemoryCache, RedisCache
from app.cache.keys import ratings_page_key, user_achievements_prefix, user_rating_key
from app.models.rating import RatingScope


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class Loader:
    """Loader que cuenta llamadas y devuelve el valor actual"""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


class TestCacheKeys:
    def test_key_shapes(self):
        assert ratings_page_key(RatingScope.CURRENT, 1, 10) == "public:ratings:current:p1:s10"
        assert ratings_page_key(RatingScope.YEARLY, 3, 25) == "public:ratings:yearly:p3:s25"
        assert user_rating_key("u1") == "user:rating:u1"
        assert user_achievements_prefix("u1") == "user:achievements:u1"


class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_hit_within_ttl(self):
        cache = MemoryCache(clock=FakeClock())
        loader = Loader({"a": 1})

        first = await cache.get_with_meta("k", loader, 60)
        second = await cache.get_with_meta("k", loader, 60)

        assert first == ({"a": 1}, 0)
        assert second == ({"a": 1}, 0)
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_version_unchanged_when_rebuilt_with_same_content(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        loader = Loader([1, 2, 3])

        await cache.get_with_meta("k", loader, 10)
        clock.now += 11
        value, version = await cache.get_with_meta("k", loader, 10)

        assert loader.calls == 2
        assert version == 0

    @pytest.mark.asyncio
    async def test_version_bumps_when_content_changes(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        loader = Loader([1])

        await cache.get_with_meta("k", loader, 10)
        clock.now += 11
        loader.value = [2]
        value, version = await cache.get_with_meta("k", loader, 10)

        assert value == [2]
        assert version == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload_and_new_version(self):
        cache = MemoryCache(clock=FakeClock())
        loader = Loader("x")

        await cache.get_with_meta("k", loader, 60)
        await cache.invalidate("k")
        value, version = await cache.get_with_meta("k", loader, 60)

        assert loader.calls == 2
        assert version == 1

    @pytest.mark.asyncio
    async def test_invalidate_prefix(self):
        cache = MemoryCache(clock=FakeClock())

        await cache.get("user:achievements:u1:list", Loader(1), 60)
        await cache.get("user:achievements:u1:progress", Loader(2), 60)
        await cache.get("user:achievements:u2:list", Loader(3), 60)

        removed = await cache.invalidate_prefix(user_achievements_prefix("u1"))

        assert removed == 2
        other = Loader(99)
        assert await cache.get("user:achievements:u2:list", other, 60) == 3
        assert other.calls == 0

    @pytest.mark.asyncio
    async def test_expired_entries_purged_past_max_entries(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock, max_entries=2)

        await cache.get("public:ratings:current:p1:s10", Loader([1]), 10)
        await cache.get("public:ratings:current:p2:s10", Loader([2]), 10)
        clock.now += 11
        await cache.get("public:ratings:current:p3:s10", Loader([3]), 10)

        assert list(cache._entries) == ["public:ratings:current:p3:s10"]
        assert list(cache._versions) == ["public:ratings:current:p3:s10"]
        assert list(cache._locks) == ["public:ratings:current:p3:s10"]

    @pytest.mark.asyncio
    async def test_purged_key_never_reuses_a_version(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock, max_entries=1)

        await cache.get_with_meta("a", Loader("old"), 10)
        await cache.invalidate("a")
        _, old_version = await cache.get_with_meta("a", Loader("older"), 10)
        clock.now += 11
        await cache.get_with_meta("b", Loader("x"), 10)

        _, new_version = await cache.get_with_meta("a", Loader("new"), 10)

        assert new_version > old_version

    @pytest.mark.asyncio
    async def test_invalidate_unknown_key_is_a_no_op(self):
        cache = MemoryCache(clock=FakeClock())

        await cache.invalidate("user:rating:nobody")

        assert await cache.get_with_meta("user:rating:nobody", Loader(1), 60) == (1, 0)


class TestRedisCache:
    @pytest.fixture
    def redis_cache(self):
        return RedisCache(FakeRedis(decode_responses=True))

    @pytest.mark.asyncio
    async def test_hit_and_version(self, redis_cache):
        loader = Loader({"entries": [1, 2]})

        first = await redis_cache.get_with_meta("k", loader, 60)
        second = await redis_cache.get_with_meta("k", loader, 60)

        assert first == ({"entries": [1, 2]}, 0)
        assert second == ({"entries": [1, 2]}, 0)
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_bumps_version(self, redis_cache):
        loader = Loader({"v": 1})

        await redis_cache.get_with_meta("k", loader, 60)
        await redis_cache.invalidate("k")
        loader.value = {"v": 2}
        value, version = await redis_cache.get_with_meta("k", loader, 60)

        assert value == {"v": 2}
        # invalidate + contenido distinto
        assert version == 2
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_prefix(self, redis_cache):
        await redis_cache.get("user:achievements:u1:a", Loader(1), 60)
        await redis_cache.get("user:achievements:u1:b", Loader(2), 60)
        await redis_cache.get("user:rating:u1", Loader(3), 60)

        removed = await redis_cache.invalidate_prefix("user:achievements:u1")

        assert removed == 2
        assert await redis_cache.client.get("user:achievements:u1:a") is None
        assert await redis_cache.client.get("user:rating:u1") is not None

        await redis_cache.close()
