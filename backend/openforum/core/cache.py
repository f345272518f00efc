"""
Cache Service - tagged JSON cache and rate limiting with Redis.

Cached reads are registered under one or more tags; writes invalidate
tags so every key filed under them is dropped.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

import redis.asyncio as redis
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.config import settings


class CacheService:
    """
    Redis-backed cache with tag invalidation.

    Failures of the store never fail the request: reads fall back to the
    loader and rate limits fail open.

    Usage:
        cache = CacheService()
        stats = await cache.remember("forum-stats", ["forum-stats"], loader)
        await cache.invalidate("forum-stats")
    """

    KEY_PREFIX = "cache:"
    TAG_PREFIX = "tag:"
    RATE_LIMIT_PREFIX = "ratelimit:"

    def __init__(
        self,
        client: redis.Redis | None = None,
        enabled: bool | None = None,
        default_ttl: int | None = None,
    ) -> None:
        """Initialize cache with an optional pre-built Redis client."""
        self._redis = client
        self.enabled = settings.cache_enabled if enabled is None else enabled
        self.default_ttl = default_ttl or settings.redis_cache_ttl

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.from_url(
                str(settings.redis_url),
                encoding="utf-8",
                decode_responses=True,
            )

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.TAG_PREFIX}{tag}"

    async def get(self, key: str) -> Any | None:
        """Get a cached value, None on miss or error."""
        if not self.enabled:
            return None
        try:
            await self.connect()
            raw = await self._redis.get(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid cache data for {key}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        tags: list[str] | None = None,
        ttl: int | None = None,
    ) -> None:
        """Store a JSON-serializable value and file it under tags."""
        if not self.enabled:
            return
        ttl = ttl or self.default_ttl
        try:
            await self.connect()
            await self._redis.setex(self._key(key), ttl, json.dumps(value, default=str))
            for tag in tags or []:
                await self._redis.sadd(self._tag_key(tag), key)
                await self._redis.expire(self._tag_key(tag), ttl)
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def remember(
        self,
        key: str,
        tags: list[str],
        loader: Callable[[], Awaitable[Any]],
        ttl: int | None = None,
    ) -> Any:
        """Return the cached value or compute, store and return it."""
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await loader()
        await self.set(key, value, tags=tags, ttl=ttl)
        return value

    async def invalidate(self, *tags: str) -> int:
        """
        Drop every key filed under the given tags.

        Returns:
            Number of keys removed
        """
        if not self.enabled or not tags:
            return 0

        removed = 0
        try:
            await self.connect()
            for tag in tags:
                tag_key = self._tag_key(tag)
                members = await self._redis.smembers(tag_key)
                if members:
                    removed += await self._redis.delete(
                        *[self._key(member) for member in members]
                    )
                await self._redis.delete(tag_key)
        except redis.RedisError as e:
            logger.warning(f"Cache invalidation failed for {tags}: {e}")
            return removed

        logger.debug(f"Invalidated {removed} cache keys for tags {tags}")
        return removed

    async def check_rate_limit(
        self,
        action: str,
        identifier: str,
        window_seconds: int,
        max_requests: int,
    ) -> tuple[bool, datetime | None]:
        """
        Fixed-window rate limit.

        Args:
            action: Action name (create_thread, create_post, ...)
            identifier: Client identity (user id or "anonymous")
            window_seconds: Window length
            max_requests: Allowed requests per window

        Returns:
            (allowed, reset_at) - reset_at is set when the request is refused
        """
        key = f"{self.RATE_LIMIT_PREFIX}{action}:{identifier}"
        try:
            await self.connect()
            count = await self._redis.incr(key)
            ttl = await self._redis.ttl(key)
            # A key left without expiry would refuse the caller forever
            if count == 1 or ttl is None or ttl < 0:
                await self._redis.expire(key, window_seconds)
                ttl = window_seconds
            if count > max_requests:
                return False, datetime.utcnow() + timedelta(seconds=ttl)
        except redis.RedisError as e:
            # Allow request if rate limiting fails
            logger.warning(f"Rate limit check failed for {key}: {e}")
            return True, None

        return True, None


async def invalidate_after_commit(db: AsyncSession, cache: CacheService, *tags: str) -> int:
    """
    Commit the request session, then drop the tags.

    A read that misses the cache in between would otherwise store the
    pre-commit rows under the freshly cleared tags.
    """
    await db.commit()
    return await cache.invalidate(*tags)


# Singleton instance
_cache_service: CacheService | None = None


async def get_cache() -> CacheService:
    """Get or create cache service singleton."""
    global _cache_service
    if _cache_service is None:
        _cache_service = CacheService()
    return _cache_service


async def close_cache() -> None:
    """Close the cache singleton."""
    global _cache_service
    if _cache_service is not None:
        await _cache_service.disconnect()
        _cache_service = None
