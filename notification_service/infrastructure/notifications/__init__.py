"""Notification storage, subscription tracking and realtime push."""

from .directory import RecipientDirectory, StaticRecipientDirectory
from .push import (
    PushConnection,
    WebSocketPushTransport,
    notification_message,
    serialize_notification,
)
from .registry import SubscriptionRegistry
from .store import NotificationStore

__all__ = [
    "NotificationStore",
    "PushConnection",
    "RecipientDirectory",
    "StaticRecipientDirectory",
    "SubscriptionRegistry",
    "WebSocketPushTransport",
    "notification_message",
    "serialize_notification",
]
