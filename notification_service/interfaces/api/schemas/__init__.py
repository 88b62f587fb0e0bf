from .notification import (
    HealthRead,
    NotificationCreate,
    NotificationRead,
    NotificationUpdate,
)

__all__ = [
    "HealthRead",
    "NotificationCreate",
    "NotificationRead",
    "NotificationUpdate",
]
