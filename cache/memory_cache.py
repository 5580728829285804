"""In-process status cache for development and tests."""
from __future__ import annotations

import asyncio
import time

from cache.base import BaseStatusCache, CacheMissError


class InMemoryStatusCache(BaseStatusCache):
    """Dict-backed cache; expired keys are dropped on read and on every write."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._expiry: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            now = time.monotonic()
            for expired in [k for k, at in self._expiry.items() if now >= at]:
                del self._store[expired]
                del self._expiry[expired]
            self._store[key] = value
            self._expiry[key] = now + ttl_seconds

    async def get(self, key: str) -> str:
        async with self._lock:
            if key not in self._store:
                raise CacheMissError(key)
            if time.monotonic() >= self._expiry.get(key, 0.0):
                del self._store[key]
                self._expiry.pop(key, None)
                raise CacheMissError(key)
            return self._store[key]

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)
            self._expiry.pop(key, None)

    def __len__(self) -> int:
        return len(self._store)
