"""Use cases for creating, delivering and transitioning notifications."""

from .dispatcher import NotificationDispatcher, PushTransport

__all__ = ["NotificationDispatcher", "PushTransport"]
