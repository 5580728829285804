"""
StatusRecorder — dual-write discipline between the record store and the
status cache.

The store is authoritative: a store failure propagates. The cache is an
accelerator: every cache failure is logged and swallowed, and a stale entry
heals either on the next transition or when its TTL runs out.
"""
from __future__ import annotations

from typing import Optional

import structlog

from cache.base import BaseStatusCache, CacheMissError
from core.errors import DependencyFailureError, NotFoundError
from database.store_base import BaseNotificationStore
from models.schemas import NotificationStatus

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_KEY_PREFIX = "notification:status:"


class StatusRecorder:
    def __init__(
        self,
        store: BaseNotificationStore,
        cache: BaseStatusCache,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        logger=None,
    ):
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.log = logger or structlog.get_logger().bind(component="status")

    def cache_key(self, notification_id: str) -> str:
        return f"{self.key_prefix}{notification_id}"

    # ── Store (authoritative) ─────────────────────────────

    async def record(self, notification_id: str, status: NotificationStatus) -> None:
        """Write status to the store, then mirror it to the cache."""
        try:
            await self.store.update_status(notification_id, status)
        except NotFoundError:
            raise
        except Exception as e:
            self.log.error("status_store_write_failed",
                           notification_id=notification_id,
                           status=status.value,
                           error=str(e))
            raise DependencyFailureError(
                f"failed to update status of {notification_id} to {status.value}: {e}"
            ) from e
        await self.cache_status(notification_id, status)

    # ── Cache (best effort) ───────────────────────────────

    async def cache_status(self, notification_id: str, status: NotificationStatus | str) -> None:
        value = NotificationStatus(status).value
        try:
            await self.cache.set_with_expiry(self.cache_key(notification_id), value, self.ttl_seconds)
        except Exception as e:
            self.log.warning("status_cache_write_failed",
                             notification_id=notification_id,
                             status=value,
                             error=str(e))

    async def cached_status(self, notification_id: str) -> Optional[NotificationStatus]:
        """Return the cached status, or None on a miss or any cache error."""
        try:
            value = await self.cache.get(self.cache_key(notification_id))
        except CacheMissError:
            return None
        except Exception as e:
            self.log.warning("status_cache_read_failed",
                             notification_id=notification_id,
                             error=str(e))
            return None
        try:
            return NotificationStatus(value)
        except ValueError:
            self.log.warning("status_cache_value_invalid",
                             notification_id=notification_id,
                             value=value)
            return None

    async def evict(self, notification_id: str) -> None:
        try:
            await self.cache.delete(self.cache_key(notification_id))
        except Exception as e:
            self.log.warning("status_cache_delete_failed",
                             notification_id=notification_id,
                             error=str(e))
