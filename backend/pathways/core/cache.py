"""
Redis cache client with circuit breaker protection.

The client is created once at application startup (create_redis_client) and
handed to CacheClient; nothing here is a module-level singleton. Every
operation degrades to a miss / no-op when Redis is absent, erroring, or its
circuit breaker is open, so the pathway pipeline never depends on the cache.

Connection defaults:
- Pool size: 20 connections
- Connect / socket timeout: 5 seconds
"""
import hashlib
import json
from typing import Any, Dict, Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from pathways.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from pathways.core.logging import get_logger

logger = get_logger(__name__)

TAG_KEY_PREFIX = "cache:tag:"


async def create_redis_client(redis_url: str) -> Optional[redis.Redis]:
    """
    Connect to Redis and verify the connection with PING.

    Returns:
        Connected client, or None when Redis is unreachable
    """
    logger.info("redis_initializing", url=redis_url)
    client = redis.from_url(
        redis_url,
        max_connections=20,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        decode_responses=True,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning(
            "redis_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        await client.aclose()
        return None

    logger.info("redis_initialized")
    return client


async def close_redis(client: Optional[redis.Redis]) -> None:
    """Close a client created by create_redis_client."""
    if client is None:
        return
    try:
        await client.aclose()
        logger.info("redis_closed")
    except RedisError as e:
        logger.error("redis_close_failed", error=str(e), exc_info=True)


def hash_text(text: str) -> str:
    """md5 hex digest used to shorten cache key components."""
    return hashlib.md5(text.encode()).hexdigest()


class CacheClient:
    """
    JSON cache on top of Redis with tag-based invalidation.

    Tags are Redis sets named cache:tag:{tag} holding the keys stored under
    that tag; invalidating a tag deletes its members and the set itself.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.redis = redis_client
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="redis_cache")

    @property
    def available(self) -> bool:
        return self.redis is not None and not self.circuit_breaker.is_open

    async def _call(self, method, *args):
        return await self.circuit_breaker.call_async(method, *args)

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Returns:
            Decoded JSON value (or the raw string if it is not JSON), None on miss or error
        """
        if not self.available:
            return None

        try:
            value = await self._call(self.redis.get, key)
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return None
        except RedisError as e:
            logger.warning("cache_get_error", key=key, error=str(e), error_type=type(e).__name__)
            return None

        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int,
        tags: Iterable[str] = (),
    ) -> bool:
        """
        Store a value with a TTL and register the key under each tag.

        Returns:
            True if the value was written
        """
        if not self.available:
            return False

        serialized = value if isinstance(value, str) else json.dumps(value)
        try:
            await self._call(self.redis.setex, key, ttl, serialized)
            for tag in tags:
                tag_key = f"{TAG_KEY_PREFIX}{tag}"
                await self._call(self.redis.sadd, tag_key, key)
                await self._call(self.redis.expire, tag_key, ttl)
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return False
        except RedisError as e:
            logger.warning("cache_set_error", key=key, error=str(e), error_type=type(e).__name__)
            return False
        return True

    async def delete(self, pattern: str) -> int:
        """
        Delete keys matching a glob pattern (e.g. 'cache:v1:*').

        Returns:
            Number of keys deleted
        """
        if not self.available:
            return 0

        deleted_count = 0
        try:
            async for key in self.redis.scan_iter(match=pattern):
                deleted_count += await self._call(self.redis.delete, key)
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", pattern=pattern)
        except RedisError as e:
            logger.warning("cache_delete_error", pattern=pattern, error=str(e), error_type=type(e).__name__)
        return deleted_count

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        """
        Delete every key registered under any of the tags.

        Returns:
            Number of cache entries deleted (tag sets themselves not counted)
        """
        if not self.available:
            return 0

        tags = list(tags)
        deleted_count = 0
        try:
            for tag in tags:
                tag_key = f"{TAG_KEY_PREFIX}{tag}"
                members = await self._call(self.redis.smembers, tag_key)
                if members:
                    deleted_count += await self._call(self.redis.delete, *sorted(members))
                await self._call(self.redis.delete, tag_key)
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", tags=list(tags))
        except RedisError as e:
            logger.warning("cache_invalidate_error", error=str(e), error_type=type(e).__name__)

        logger.info("cache_tags_invalidated", deleted=deleted_count)
        return deleted_count

    async def exists(self, key: str) -> bool:
        if not self.available:
            return False
        try:
            return bool(await self._call(self.redis.exists, key))
        except (CircuitBreakerOpenError, RedisError):
            return False

    def get_circuit_breaker_metrics(self) -> Dict:
        return self.circuit_breaker.get_metrics()
