"""
Dispatcher — the consumer side of the pipeline.

For each delivery taken off the queue:
1. Parse the payload; anything malformed is rejected (dead-lettered)
2. Validate id, message and chat_id before touching any external system
3. Skip records that already reached a terminal status, and dead-letter
   records still in `sending` (redelivery guards)
4. Record `sending`, call the channel, record `sent` or `failed`

A failed delivery is a normal, terminal outcome: the record is marked
`failed` and a DeliveryFailedError is raised so the broker dead-letters the
message. Nothing here re-sends a failed notification, and a store failure
after the channel call is dead-lettered too, since redelivery would send twice.
"""
from __future__ import annotations

import structlog

from channels.base import ChannelAdapter
from core.errors import (
    DeliveryFailedError, DependencyFailureError, InvalidInputError, NotFoundError,
    NotifierError,
)
from core.status import StatusRecorder
from models.schemas import Notification, NotificationStatus


class NotificationDispatcher:
    def __init__(self, recorder: StatusRecorder, channel: ChannelAdapter, logger=None):
        self.recorder = recorder
        self.channel = channel
        self.log = logger or structlog.get_logger().bind(component="dispatcher")

    async def handle_delivery(self, payload: str | bytes) -> None:
        """Queue handler: returning acknowledges, raising rejects."""
        try:
            notification = Notification.from_payload(payload)
        except ValueError as e:
            body = payload.decode(errors="replace") if isinstance(payload, bytes) else payload
            self.log.error("notification_payload_malformed", error=str(e), body=body[:500])
            raise InvalidInputError(f"malformed notification payload: {e}") from e

        self.log.debug("notification_received", notification_id=notification.id)
        await self.process_notification(notification)

    async def process_notification(self, notification: Notification) -> NotificationStatus:
        """Deliver one notification and return the terminal status it ended in."""
        if not notification.id or not notification.message or not notification.chat_id:
            raise InvalidInputError("invalid notification: missing required fields")

        nid = notification.id
        current = await self._current_status(nid)
        if current.is_terminal:
            self.log.info("notification_already_terminal",
                          notification_id=nid,
                          status=current.value)
            return current

        if current == NotificationStatus.SENDING:
            # An earlier attempt recorded `sending` but never its outcome.
            self.log.warning("notification_outcome_unknown", notification_id=nid)
            raise DependencyFailureError(
                f"notification {nid} is still sending from an earlier attempt; not resending",
                retryable=False,
            )

        await self.recorder.record(nid, NotificationStatus.SENDING)

        self.log.info("sending_notification", notification_id=nid, chat_id=notification.chat_id)
        try:
            await self.channel.send(notification.chat_id, notification.message)
        except Exception as e:
            self.log.error("notification_delivery_failed", notification_id=nid, error=str(e))
            await self._record_outcome(nid, NotificationStatus.FAILED)
            raise DeliveryFailedError(nid, e) from e

        await self._record_outcome(nid, NotificationStatus.SENT)
        self.log.info("notification_sent", notification_id=nid)
        return NotificationStatus.SENT

    async def _record_outcome(self, notification_id: str, status: NotificationStatus) -> None:
        # The channel has been called by now; a redelivery would send twice.
        try:
            await self.recorder.record(notification_id, status)
        except NotifierError as e:
            self.log.error("notification_status_unrecorded",
                           notification_id=notification_id,
                           status=status.value,
                           error=str(e))
            raise DependencyFailureError(
                f"notification {notification_id} left the channel but "
                f"recording {status.value} failed: {e}",
                retryable=False,
            ) from e

    async def _current_status(self, notification_id: str) -> NotificationStatus:
        try:
            return await self.recorder.store.read_status(notification_id)
        except NotFoundError as e:
            # Publishing happens before the record is persisted, so an
            # immediate delivery can arrive first. Let the broker redeliver.
            raise DependencyFailureError(
                f"notification {notification_id} is not persisted yet", retryable=True,
            ) from e
        except Exception as e:
            raise DependencyFailureError(
                f"failed to read status of {notification_id}: {e}"
            ) from e
