"""Status cache interface."""
from __future__ import annotations

from abc import ABC, abstractmethod


class CacheError(Exception):
    """Raised when the cache backend cannot serve a request."""


class CacheMissError(CacheError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"cache miss: {key}")


class BaseStatusCache(ABC):
    """Key → value mapping with per-key expiry."""

    @abstractmethod
    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> str:
        """Return the value, raising CacheMissError when absent or expired."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def ping(self) -> bool:
        """Raise CacheError when the backend is unreachable."""
        return True

    async def close(self) -> None:
        pass
