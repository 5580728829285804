"""
Database layer — Notification record store.

Backends:
  - SQL (PostgreSQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)

Quick start:
  from database import create_store
  store = create_store({"store_backend": "memory"})
  status = await store.read_status(notification_id)
"""
from database.models import Base, NotificationRow
from database.engine import Database, async_url, redact_url
from database.store_base import BaseNotificationStore
from database.store import SqlNotificationStore
from database.store_memory import InMemoryNotificationStore
from database.store_factory import create_store

__all__ = [
    # ORM models
    "Base", "NotificationRow",
    # Engine / sessions
    "Database", "async_url", "redact_url",
    # Store interface
    "BaseNotificationStore",
    # Store backends
    "SqlNotificationStore", "InMemoryNotificationStore",
    # Factory
    "create_store",
]
