"""
Scheduler — turns a notification's send time into a broker delay and
publishes it to the delay queue.

The publish is retried on connection-level failures only (broker unreachable,
channel closed) with bounded attempts and exponential backoff; this is a
transport policy and never re-schedules the notification itself.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from tenacity import (
    AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt,
    wait_exponential,
)

from core.errors import DependencyFailureError, InvalidInputError
from job_queue.message_queue import DelayQueue, QueueConnectionError
from models.schemas import Notification


_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))",
    re.ASCII,
)


def parse_send_time(value: str) -> Optional[datetime]:
    """
    Parse an RFC3339 timestamp. Empty means "no scheduled time".
    Seconds and a timezone offset are mandatory; fractions beyond
    microseconds are truncated.
    """
    if not value:
        return None
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise InvalidInputError(f"invalid time format (use RFC3339): {value!r}")

    year, month, day, hour, minute, second = (int(g) for g in match.group(1, 2, 3, 4, 5, 6))
    fraction, utc, sign, off_hours, off_minutes = match.group(7, 8, 9, 10, 11)
    microsecond = int((fraction or "")[:6].ljust(6, "0"))
    try:
        if utc:
            tz = timezone.utc
        else:
            offset = timedelta(hours=int(off_hours), minutes=int(off_minutes))
            if int(off_minutes) >= 60:
                raise ValueError("offset minutes out of range")
            tz = timezone(-offset if sign == "-" else offset)
        return datetime(year, month, day, hour, minute, second, microsecond, tzinfo=tz)
    except ValueError as e:
        raise InvalidInputError(f"invalid time format (use RFC3339): {value!r}") from e


def compute_delay_ms(send_time: str, now: Optional[datetime] = None) -> int:
    """Milliseconds until send_time, never negative. Empty send_time means 0."""
    scheduled = parse_send_time(send_time)
    if scheduled is None:
        return 0
    now = now or datetime.now(timezone.utc)
    delta_ms = int((scheduled - now).total_seconds() * 1000)
    return max(0, delta_ms)


def validate_notification(notification: Notification) -> None:
    if not notification.message:
        raise InvalidInputError("message is required")
    if not notification.chat_id:
        raise InvalidInputError("chat_id is required")


class NotificationScheduler:
    """Producer side of the pipeline."""

    def __init__(
        self,
        queue: DelayQueue,
        routing_key: str,
        publish_attempts: int = 3,
        publish_initial_delay: float = 3.0,
        publish_backoff: float = 2.0,
        logger=None,
    ):
        self.queue = queue
        self.routing_key = routing_key
        self.publish_attempts = publish_attempts
        self.publish_initial_delay = publish_initial_delay
        self.publish_backoff = publish_backoff
        self.log = logger or structlog.get_logger().bind(component="scheduler")

    def compute_delay(self, notification: Notification, now: Optional[datetime] = None) -> int:
        validate_notification(notification)
        return compute_delay_ms(notification.time, now)

    async def schedule(self, notification: Notification, now: Optional[datetime] = None) -> int:
        """Validate, compute the delay and publish. Returns the delay in ms."""
        delay_ms = self.compute_delay(notification, now)
        payload = notification.to_payload()

        self.log.info("publishing_notification",
                      notification_id=notification.id,
                      routing_key=self.routing_key,
                      delay_ms=delay_ms)
        await self._publish(payload, delay_ms, notification.id)
        return delay_ms

    async def _publish(self, payload: str, delay_ms: int, notification_id: str) -> None:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(QueueConnectionError),
            stop=stop_after_attempt(self.publish_attempts),
            wait=wait_exponential(
                multiplier=self.publish_initial_delay,
                exp_base=self.publish_backoff,
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        self.log.warning("publish_retry",
                                         notification_id=notification_id,
                                         attempt=attempt.retry_state.attempt_number)
                    await self.queue.publish(payload, self.routing_key, delay_ms)
        except RetryError as e:
            cause = e.last_attempt.exception()
            self.log.error("publish_failed",
                           notification_id=notification_id,
                           attempts=self.publish_attempts,
                           error=str(cause))
            raise DependencyFailureError(f"failed to publish notification: {cause}") from cause
        except Exception as e:
            self.log.error("publish_failed", notification_id=notification_id, error=str(e))
            raise DependencyFailureError(f"failed to publish notification: {e}") from e
