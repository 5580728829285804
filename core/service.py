"""
NotificationService — the facade the HTTP layer talks to.

Creation publishes first and persists second: if publishing fails nothing
is stored and the caller gets an error; if persisting fails after a
successful publish the message is already on the broker and the dispatcher
redelivers it until the record shows up or the attempts run out.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog

from core.dispatcher import NotificationDispatcher
from core.errors import DependencyFailureError, InvalidInputError, NotFoundError
from core.scheduler import NotificationScheduler
from core.status import StatusRecorder
from models.schemas import Notification, NotificationStatus, new_notification_id


class NotificationService:
    def __init__(
        self,
        scheduler: NotificationScheduler,
        recorder: StatusRecorder,
        dispatcher: NotificationDispatcher,
        logger=None,
    ):
        self.scheduler = scheduler
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.log = logger or structlog.get_logger().bind(component="service")

    @property
    def store(self):
        return self.recorder.store

    # ── Create ────────────────────────────────────────────

    async def create(self, notification: Notification, now: Optional[datetime] = None) -> str:
        """Assign an id, schedule delivery, persist. Returns the new id."""
        notification = notification.model_copy(update={
            "id": new_notification_id(),
            "status": NotificationStatus.CREATED.value,
        })

        delay_ms = await self.scheduler.schedule(notification, now)

        try:
            await self.store.insert(notification)
        except Exception as e:
            self.log.error("notification_persist_failed",
                           notification_id=notification.id,
                           error=str(e))
            raise DependencyFailureError(f"failed to save notification: {e}") from e

        await self.recorder.cache_status(notification.id, NotificationStatus.CREATED)
        self.log.info("notification_created",
                      notification_id=notification.id,
                      chat_id=notification.chat_id,
                      delay_ms=delay_ms)
        return notification.id

    # ── Read ──────────────────────────────────────────────

    async def get_status(self, notification_id: str) -> NotificationStatus:
        """Cache first, then the store. The store answer repopulates the cache."""
        if not notification_id:
            raise InvalidInputError("id is required")

        cached = await self.recorder.cached_status(notification_id)
        if cached is not None:
            return cached

        try:
            status = await self.store.read_status(notification_id)
        except NotFoundError:
            raise
        except Exception as e:
            raise DependencyFailureError(
                f"failed to read status of {notification_id}: {e}"
            ) from e

        await self.recorder.cache_status(notification_id, status)
        return status

    async def list_all(self) -> list[Notification]:
        try:
            return await self.store.read_all()
        except Exception as e:
            raise DependencyFailureError(f"failed to list notifications: {e}") from e

    # ── Cancel ────────────────────────────────────────────

    async def delete(self, notification_id: str) -> None:
        """Mark the notification cancelled and drop its cached status."""
        if not notification_id:
            raise InvalidInputError("id is required")

        try:
            await self.store.delete(notification_id)
        except NotFoundError:
            raise
        except Exception as e:
            raise DependencyFailureError(
                f"failed to delete notification {notification_id}: {e}"
            ) from e

        await self.recorder.evict(notification_id)
        self.log.info("notification_cancelled", notification_id=notification_id)

    # ── Deliver ───────────────────────────────────────────

    async def process_notification(self, notification: Notification) -> NotificationStatus:
        return await self.dispatcher.process_notification(notification)
