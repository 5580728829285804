"""Tests for the notification model and its wire form."""
import json

import pytest

from models.schemas import (
    Notification, NotificationStatus, TERMINAL_STATUSES, new_notification_id,
)


class TestNotificationStatus:
    def test_values(self):
        assert [s.value for s in NotificationStatus] == [
            "created", "sending", "sent", "failed", "cancelled",
        ]

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {
            NotificationStatus.SENT, NotificationStatus.FAILED, NotificationStatus.CANCELLED,
        }
        assert not NotificationStatus.CREATED.is_terminal
        assert not NotificationStatus.SENDING.is_terminal

    def test_compares_with_plain_strings(self):
        assert NotificationStatus("sent") == "sent"


class TestNotification:
    def test_wire_field_names(self):
        n = Notification(id="n1", message="hi", time="", status="created", chat_id=42)
        assert json.loads(n.to_payload()) == {
            "id": "n1", "message": "hi", "time": "", "status": "created", "chat_id": 42,
        }

    def test_payload_round_trip(self):
        n = Notification(id="n1", message="héllo ✓", time="2025-03-01T12:10:00Z",
                         status="created", chat_id=-1001234567890)
        assert Notification.from_payload(n.to_payload()) == n

    def test_missing_fields_default_to_zero_values(self):
        n = Notification.from_payload('{"message": "hi"}')
        assert (n.id, n.time, n.status, n.chat_id) == ("", "", "", 0)

    @pytest.mark.parametrize("payload", [
        "",
        "{broken",
        '"just a string"',
        '{"chat_id": {"nested": true}}',
    ])
    def test_bad_payloads_raise_value_error(self, payload):
        with pytest.raises(ValueError):
            Notification.from_payload(payload)

    def test_new_ids_are_unique(self):
        assert len({new_notification_id() for _ in range(100)}) == 100
