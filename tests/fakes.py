"""Test doubles shared across the test modules."""
from typing import Any

from cache.base import BaseStatusCache, CacheError
from channels.base import ChannelAdapter
from database.store_memory import InMemoryNotificationStore
from models.schemas import NotificationStatus


class FailingChannel(ChannelAdapter):
    """Channel whose every send fails with the given error."""

    channel_name = "failing"

    def __init__(self, error: Exception = None):
        super().__init__()
        self.error = error or RuntimeError("chat not found")
        self.attempts = 0

    async def _do_send(self, recipient: int, text: str) -> dict[str, Any]:
        self.attempts += 1
        raise self.error


class BrokenCache(BaseStatusCache):
    """Cache backend that is down."""

    def __init__(self):
        self.calls = 0

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        self.calls += 1
        raise CacheError("connection refused")

    async def get(self, key: str) -> str:
        self.calls += 1
        raise CacheError("connection refused")

    async def delete(self, key: str) -> None:
        self.calls += 1
        raise CacheError("connection refused")

    async def ping(self) -> bool:
        raise CacheError("connection refused")


class RecordingStore(InMemoryNotificationStore):
    """In-memory store that remembers every status written, in order."""

    def __init__(self):
        super().__init__()
        self.status_writes: list[tuple[str, NotificationStatus]] = []
        self.read_status_calls = 0

    async def update_status(self, notification_id, status):
        self.status_writes.append((notification_id, NotificationStatus(status)))
        await super().update_status(notification_id, status)

    async def read_status(self, notification_id):
        self.read_status_calls += 1
        return await super().read_status(notification_id)
