"""
SqlNotificationStore — Portable SQL queries for PostgreSQL and SQLite.

Status transitions are single-row UPDATE statements, so concurrent
dispatchers touching different ids never contend, and writes for the same
id are serialized by the database's row locking.
"""
from __future__ import annotations

import structlog
from sqlalchemy import select, update

from core.errors import NotFoundError
from database.models import NotificationRow
from database.engine import Database
from database.store_base import BaseNotificationStore
from models.schemas import Notification, NotificationStatus

logger = structlog.get_logger()


class SqlNotificationStore(BaseNotificationStore):
    """
    Persistent notification store backed by any SQLAlchemy-supported database.
    The store owns its Database: initialize() creates the table, close()
    disposes the engine.
    """

    def __init__(self, database: Database):
        self.database = database

    async def initialize(self) -> None:
        await self.database.create_tables()

    async def close(self) -> None:
        await self.database.dispose()

    async def insert(self, notification: Notification) -> None:
        async with self.database.session() as db:
            db.add(NotificationRow(
                id=notification.id,
                message=notification.message,
                time=notification.time,
                status=notification.status,
                chat_id=notification.chat_id,
            ))
        logger.info("notification_row_created", notification_id=notification.id)

    async def get(self, notification_id: str) -> Notification:
        async with self.database.session() as db:
            row = await db.get(NotificationRow, notification_id)
            if row is None:
                raise NotFoundError(notification_id)
            return self._row_to_notification(row)

    async def read_status(self, notification_id: str) -> NotificationStatus:
        async with self.database.session() as db:
            stmt = select(NotificationRow.status).where(NotificationRow.id == notification_id)
            result = await db.execute(stmt)
            status = result.scalar_one_or_none()
            if status is None:
                raise NotFoundError(notification_id)
            return NotificationStatus(status)

    async def update_status(self, notification_id: str, status: NotificationStatus) -> None:
        status = NotificationStatus(status)
        async with self.database.session() as db:
            stmt = (
                update(NotificationRow)
                .where(NotificationRow.id == notification_id)
                .values(status=status.value)
            )
            result = await db.execute(stmt)
            if result.rowcount == 0:
                raise NotFoundError(notification_id)
        logger.debug("notification_status_updated",
                     notification_id=notification_id,
                     status=status.value)

    async def delete(self, notification_id: str) -> None:
        await self.update_status(notification_id, NotificationStatus.CANCELLED)
        logger.info("notification_cancelled", notification_id=notification_id)

    async def read_all(self) -> list[Notification]:
        async with self.database.session() as db:
            stmt = select(NotificationRow).order_by(NotificationRow.created_at)
            result = await db.execute(stmt)
            return [self._row_to_notification(row) for row in result.scalars()]

    # ── Helpers ────────────────────────────────────────────

    @staticmethod
    def _row_to_notification(row: NotificationRow) -> Notification:
        return Notification(
            id=row.id,
            message=row.message,
            time=row.time or "",
            status=row.status,
            chat_id=row.chat_id,
        )
