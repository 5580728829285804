"""
Status cache — short-lived id → status mapping in front of the record store.

Backends:
  - Redis (production)
  - In-memory (development/testing)
"""
from __future__ import annotations

import structlog

from cache.base import BaseStatusCache, CacheError, CacheMissError
from cache.memory_cache import InMemoryStatusCache
from cache.redis_cache import RedisStatusCache

logger = structlog.get_logger()


def create_status_cache(cache_config: dict = None) -> BaseStatusCache:
    """Factory: create the configured cache backend."""
    config = cache_config or {}
    backend = config.get("backend", "memory")

    if backend == "redis":
        cache = RedisStatusCache(redis_url=config.get("redis_url", "redis://localhost:6379"))
    else:
        cache = InMemoryStatusCache()

    logger.info("status_cache_created", backend=backend)
    return cache


__all__ = [
    "BaseStatusCache", "CacheError", "CacheMissError",
    "InMemoryStatusCache", "RedisStatusCache",
    "create_status_cache",
]
