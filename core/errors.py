"""
Error taxonomy for the delivery pipeline.

  InvalidInputError       bad request data; never retried, client error
  NotFoundError           unknown notification id; client error
  DependencyFailureError  store / cache / broker / channel failure
  DeliveryFailedError     the channel rejected the message and the record
                          has been marked failed; dead-lettered, not retried

`retryable` tells the queue whether a rejected delivery may be redelivered.
"""
from __future__ import annotations


class NotifierError(Exception):
    """Base exception for all pipeline operations."""

    retryable: bool = False

    def __init__(self, message: str, retryable: bool | None = None):
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)


class InvalidInputError(NotifierError):
    pass


class NotFoundError(NotifierError):
    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"notification not found: {notification_id}")


class DependencyFailureError(NotifierError):
    retryable = True


class DeliveryFailedError(DependencyFailureError):
    retryable = False

    def __init__(self, notification_id: str, cause: Exception):
        self.notification_id = notification_id
        self.cause = cause
        super().__init__(f"failed to deliver notification {notification_id}: {cause}")
