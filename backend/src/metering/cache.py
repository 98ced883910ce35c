"""Redis caching layer for plan reads.

Cache failures are logged and treated as misses; the database stays the
source of truth.
"""
import json
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from metering.config import settings

logger = structlog.get_logger(__name__)


class RedisCache:
    """Redis-based caching layer."""

    def __init__(self, url: Optional[str] = None, enabled: Optional[bool] = None):
        self.url = url or settings.redis_url
        self._enabled = enabled
        self.redis_client: Optional[redis.Redis] = None

    @property
    def enabled(self) -> bool:
        """Whether caching is on; follows ``settings.cache_enabled`` unless overridden."""
        return settings.cache_enabled if self._enabled is None else self._enabled

    async def _ensure_connection(self) -> redis.Redis:
        """
        Ensure Redis connection is established.

        Returns:
            Redis client instance
        """
        if self.redis_client is None:
            client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            await client.ping()
            self.redis_client = client
            logger.info("redis_connected", url=self.url)

        return self.redis_client

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found, expired or unavailable
        """
        if not self.enabled:
            return None

        try:
            client = await self._ensure_connection()
            value = await client.get(key)
        except redis.RedisError as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None

        if value is None:
            logger.debug("cache_miss", key=key)
            return None

        logger.debug("cache_hit", key=key)
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time-to-live in seconds (default: ``plan_cache_ttl_seconds``)

        Returns:
            True if successful, False otherwise
        """
        if not self.enabled:
            return False

        ttl = ttl or settings.plan_cache_ttl_seconds
        try:
            client = await self._ensure_connection()
            await client.setex(key, ttl, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.warning("cache_set_failed", key=key, error=str(e))
            return False

        logger.debug("cache_set", key=key, ttl=ttl)
        return True

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all keys matching a pattern.

        Args:
            pattern: Key pattern (e.g. "plan:*")

        Returns:
            Number of keys deleted
        """
        if not self.enabled:
            return 0

        deleted = 0
        try:
            client = await self._ensure_connection()
            async for key in client.scan_iter(match=pattern):
                deleted += await client.delete(key)
        except redis.RedisError as e:
            logger.warning("cache_pattern_invalidation_failed", pattern=pattern, error=str(e))
            return deleted

        logger.info("cache_pattern_invalidated", pattern=pattern, count=deleted)
        return deleted

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_closed")


# Global cache instance
cache = RedisCache()


def cache_key(entity_type: str, entity_id: str, suffix: str = "") -> str:
    """
    Generate consistent cache key.

    Args:
        entity_type: Entity type (plan, ...)
        entity_id: Entity ID
        suffix: Optional suffix for variations

    Returns:
        Cache key string
    """
    if suffix:
        return f"{entity_type}:{entity_id}:{suffix}"
    return f"{entity_type}:{entity_id}"
