"""Redis-backed status cache."""
from __future__ import annotations

from typing import Optional

import structlog
from redis.exceptions import RedisError

from cache.base import BaseStatusCache, CacheError, CacheMissError

logger = structlog.get_logger()


class RedisStatusCache(BaseStatusCache):
    """Stores each status as a plain string key with SET ... EX."""

    def __init__(self, redis_url: str = "redis://localhost:6379", client=None):
        self._redis_url = redis_url
        self._redis = client

    async def _client(self):
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                max_connections=20,
            )
            logger.info("redis_cache_connected", url=self._redis_url.split("@")[-1])
        return self._redis

    async def ping(self) -> bool:
        client = await self._client()
        try:
            return bool(await client.ping())
        except RedisError as e:
            raise CacheError(f"redis ping failed: {e}") from e

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        client = await self._client()
        try:
            await client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise CacheError(f"redis SET {key} failed: {e}") from e

    async def get(self, key: str) -> str:
        client = await self._client()
        try:
            value: Optional[str] = await client.get(key)
        except RedisError as e:
            raise CacheError(f"redis GET {key} failed: {e}") from e
        if value is None:
            raise CacheMissError(key)
        return value

    async def delete(self, key: str) -> None:
        client = await self._client()
        try:
            await client.delete(key)
        except RedisError as e:
            raise CacheError(f"redis DEL {key} failed: {e}") from e

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
