"""
Core data models for the Delayed Notifier.
The Notification is the schedulable unit of work shared by every component;
its JSON form is both the queue payload and the API representation.
"""
from __future__ import annotations

import json
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError


class NotificationStatus(str, Enum):
    CREATED = "created"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    NotificationStatus.SENT,
    NotificationStatus.FAILED,
    NotificationStatus.CANCELLED,
})


def new_notification_id() -> str:
    return str(uuid.uuid4())


class Notification(BaseModel):
    """A message plus recipient plus optional send time."""
    id: str = ""
    message: str = ""
    time: str = ""                            # RFC3339, empty = send immediately
    status: str = ""
    chat_id: int = 0                          # Telegram chat id

    def to_payload(self) -> str:
        return json.dumps(self.model_dump(mode="json"))

    @classmethod
    def from_payload(cls, payload: str | bytes) -> Notification:
        """
        Parse a queue payload. Raises ValueError for anything that is not a
        JSON object with the notification fields of the right types.
        """
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise ValueError(f"payload is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("payload is not a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"payload does not describe a notification: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
