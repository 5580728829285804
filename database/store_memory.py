"""
InMemoryNotificationStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with SqlNotificationStore
  - Safe for concurrent tasks on one event loop (asyncio.Lock)
  - All data lost on process restart
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from typing import Any

from core.errors import NotFoundError
from database.store_base import BaseNotificationStore
from models.schemas import Notification, NotificationStatus

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryNotificationStore(BaseNotificationStore):
    """Same semantics as SqlNotificationStore, records kept as dicts."""

    def __init__(self):
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        logger.info("inmemory_store_initialized")

    async def insert(self, notification: Notification) -> None:
        now = _utcnow()
        async with self._lock:
            self._rows[notification.id] = {
                **notification.to_dict(),
                "created_at": now,
                "updated_at": now,
            }

    async def get(self, notification_id: str) -> Notification:
        async with self._lock:
            row = self._rows.get(notification_id)
            if row is None:
                raise NotFoundError(notification_id)
            return self._row_to_notification(row)

    async def read_status(self, notification_id: str) -> NotificationStatus:
        async with self._lock:
            row = self._rows.get(notification_id)
            if row is None:
                raise NotFoundError(notification_id)
            return NotificationStatus(row["status"])

    async def update_status(self, notification_id: str, status: NotificationStatus) -> None:
        async with self._lock:
            row = self._rows.get(notification_id)
            if row is None:
                raise NotFoundError(notification_id)
            row["status"] = NotificationStatus(status).value
            row["updated_at"] = _utcnow()

    async def delete(self, notification_id: str) -> None:
        await self.update_status(notification_id, NotificationStatus.CANCELLED)

    async def read_all(self) -> list[Notification]:
        async with self._lock:
            rows = sorted(self._rows.values(), key=lambda r: r["created_at"])
            return [self._row_to_notification(r) for r in rows]

    @staticmethod
    def _row_to_notification(row: dict[str, Any]) -> Notification:
        return Notification(
            id=row["id"], message=row["message"], time=row["time"],
            status=row["status"], chat_id=row["chat_id"],
        )
