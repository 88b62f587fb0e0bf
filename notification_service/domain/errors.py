"""Error taxonomy shared by every layer of the notification service.

Only :class:`InvalidArgument`, :class:`NotFound` and :class:`Conflict` are
surfaced to callers as operation failures. The :class:`DeliveryError` family
is raised by channel transports and absorbed by the dispatcher into the
notification's delivery outcomes.
"""

from __future__ import annotations


class NotificationError(Exception):
    """Base class for notification lifecycle failures."""


class InvalidArgument(NotificationError, ValueError):
    """A creation or update request is malformed. Not retried."""


class NotFound(NotificationError, LookupError):
    """The referenced notification id does not exist. Not retried."""

    def __init__(self, notification_id: str) -> None:
        super().__init__(f"Notification {notification_id} not found")
        self.notification_id = notification_id


class Conflict(NotificationError):
    """An update targeted a notification that is already dismissed."""

    def __init__(self, notification_id: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Notification {notification_id} is dismissed and cannot be updated"
        )
        self.notification_id = notification_id


class DeliveryError(Exception):
    """Base class for channel transport failures."""

    reason = "delivery-error"

    def __init__(self, message: str = "", *, reason: str | None = None) -> None:
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason


class ConnectionClosed(DeliveryError):
    """The push target is stale; the caller must drop it from the registry."""

    reason = "connection-closed"


class TransientError(DeliveryError):
    """A retryable email failure (network trouble, SMTP 4xx, throttling)."""

    reason = "transient"


class EmailEndpointUnavailable(TransientError):
    """The mail submission endpoint could not be reached before sending."""

    reason = "endpoint-unavailable"


class PermanentError(DeliveryError):
    """A non-retryable email failure (invalid address, policy rejection)."""

    reason = "permanent"


__all__ = [
    "NotificationError",
    "InvalidArgument",
    "NotFound",
    "Conflict",
    "DeliveryError",
    "ConnectionClosed",
    "TransientError",
    "EmailEndpointUnavailable",
    "PermanentError",
]
