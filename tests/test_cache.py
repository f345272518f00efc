"""
Tests for the tagged cache and rate limiting.
"""

import redis.asyncio as redis

from openforum.core.cache import CacheService


class FailingRedis:
    """Redis client whose every command fails."""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")

        return fail


class TestRemember:
    """Tests for cache reads and writes."""

    async def test_loader_called_once(self, cache):
        calls = []

        async def loader():
            calls.append(1)
            return {"total_threads": 3}

        first = await cache.remember("forum-stats", ["forum-stats"], loader)
        second = await cache.remember("forum-stats", ["forum-stats"], loader)

        assert first == second == {"total_threads": 3}
        assert len(calls) == 1

    async def test_keys_are_prefixed_and_tagged(self, cache, redis_client):
        await cache.set("home-threads", [1, 2], tags=["get-threads"], ttl=30)

        assert "cache:home-threads" in redis_client.values
        assert redis_client.values["tag:get-threads"] == {"home-threads"}

    async def test_disabled_cache_always_loads(self, redis_client):
        cache = CacheService(client=redis_client, enabled=False)
        calls = []

        async def loader():
            calls.append(1)
            return 1

        await cache.remember("k", ["t"], loader)
        await cache.remember("k", ["t"], loader)

        assert len(calls) == 2
        assert redis_client.values == {}

    async def test_invalid_json_is_a_miss(self, cache, redis_client):
        redis_client.values["cache:broken"] = "{not json"
        assert await cache.get("broken") is None


class TestInvalidate:
    """Tests for tag invalidation."""

    async def test_drops_every_key_under_tag(self, cache):
        await cache.set("user-stats:1", {"a": 1}, tags=["user-stats", "user-stats-1"])
        await cache.set("user-stats:2", {"a": 2}, tags=["user-stats", "user-stats-2"])
        await cache.set("forum-stats", {"b": 1}, tags=["forum-stats"])

        removed = await cache.invalidate("user-stats")

        assert removed == 2
        assert await cache.get("user-stats:1") is None
        assert await cache.get("user-stats:2") is None
        assert await cache.get("forum-stats") == {"b": 1}

    async def test_unknown_tag(self, cache):
        assert await cache.invalidate("nothing-here") == 0


class TestRateLimit:
    """Tests for the fixed-window limiter."""

    async def test_allows_up_to_max(self, cache):
        results = [await cache.check_rate_limit("create_thread", "1", 60, 3) for _ in range(3)]
        assert all(allowed for allowed, _ in results)

        allowed, reset_at = await cache.check_rate_limit("create_thread", "1", 60, 3)
        assert not allowed
        assert reset_at is not None

    async def test_limits_are_per_identifier(self, cache):
        await cache.check_rate_limit("create_post", "1", 60, 1)
        allowed, _ = await cache.check_rate_limit("create_post", "2", 60, 1)
        assert allowed

    async def test_counter_without_expiry_is_repaired(self, cache, redis_client):
        key = f"{cache.RATE_LIMIT_PREFIX}verify_otp:ada@example.com"
        redis_client.values[key] = 5

        allowed, reset_at = await cache.check_rate_limit("verify_otp", "ada@example.com", 60, 3)

        assert not allowed
        assert reset_at is not None
        assert 0 < await redis_client.ttl(key) <= 60


class TestStoreFailures:
    """Store outages never fail the caller."""

    async def test_read_falls_back_to_loader(self):
        cache = CacheService(client=FailingRedis(), enabled=True)

        async def loader():
            return "fresh"

        assert await cache.remember("k", ["t"], loader) == "fresh"

    async def test_rate_limit_fails_open(self):
        cache = CacheService(client=FailingRedis(), enabled=True)
        assert await cache.check_rate_limit("create_post", "1", 60, 1) == (True, None)

    async def test_invalidate_returns_zero(self):
        cache = CacheService(client=FailingRedis(), enabled=True)
        assert await cache.invalidate("forum-stats") == 0
