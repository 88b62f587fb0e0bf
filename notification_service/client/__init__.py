"""Client-side helpers: the HTTP API wrapper and the optimistic reconciler."""

from .api import ApiRejected, ApiUnavailable, NotificationApiClient
from .reconciler import (
    GENERIC_ERROR,
    ClientError,
    LocalNotification,
    NotificationReconciler,
    NotificationSpec,
    PendingOperation,
)

__all__ = [
    "ApiRejected",
    "ApiUnavailable",
    "ClientError",
    "GENERIC_ERROR",
    "LocalNotification",
    "NotificationApiClient",
    "NotificationReconciler",
    "NotificationSpec",
    "PendingOperation",
]
