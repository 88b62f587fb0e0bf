"""Domain entities exposed by the application."""

from .notification import (
    OUTCOME_DELIVERED,
    Channel,
    MessageContent,
    Notification,
    NotificationPatch,
    NotificationStatus,
    failed,
    parse_channels,
    skipped,
)
from .subscription import Subscription

__all__ = [
    "Channel",
    "MessageContent",
    "Notification",
    "NotificationPatch",
    "NotificationStatus",
    "OUTCOME_DELIVERED",
    "Subscription",
    "failed",
    "parse_channels",
    "skipped",
]
