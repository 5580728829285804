"""
Abstract Notification Store — Interface for all record store backends.

Implementations:
  - SqlNotificationStore      (PostgreSQL / SQLite via SQLAlchemy)
  - InMemoryNotificationStore (dict-based, single-process, no persistence)

Every method that addresses a single id raises core.errors.NotFoundError when
no such record exists. Any other backend failure propagates unchanged; the
service layer classifies it.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from models.schemas import Notification, NotificationStatus


class BaseNotificationStore(ABC):
    """Interface that all notification store backends must implement."""

    async def initialize(self) -> None:
        """Prepare the backend (create tables). Called once at startup."""
        pass

    @abstractmethod
    async def insert(self, notification: Notification) -> None:
        ...

    @abstractmethod
    async def get(self, notification_id: str) -> Notification:
        ...

    @abstractmethod
    async def read_status(self, notification_id: str) -> NotificationStatus:
        ...

    @abstractmethod
    async def update_status(self, notification_id: str, status: NotificationStatus) -> None:
        ...

    @abstractmethod
    async def delete(self, notification_id: str) -> None:
        """Mark the record cancelled. The row itself is kept for auditing."""
        ...

    @abstractmethod
    async def read_all(self) -> list[Notification]:
        ...

    async def close(self) -> None:
        pass
