"""ORM models used by the application infrastructure."""

from .notification import NotificationDeliveryModel, NotificationModel

__all__ = [
    "NotificationDeliveryModel",
    "NotificationModel",
]
