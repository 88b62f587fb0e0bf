"""Domain entity representing a user notification."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Union

from notification_service.domain.errors import InvalidArgument

MessageContent = Union[str, dict[str, Any]]

OUTCOME_DELIVERED = "delivered"


class NotificationStatus(str, Enum):
    """Lifecycle state of a notification. The only edge is ACTIVE -> DISMISSED."""

    ACTIVE = "ACTIVE"
    DISMISSED = "DISMISSED"


class Channel(str, Enum):
    """Delivery mechanisms a notification may request."""

    PUSH = "push"
    EMAIL = "email"


def parse_channels(values: Iterable[str | Channel] | None) -> frozenset[Channel]:
    """Return the set of channels named by ``values``."""

    channels: set[Channel] = set()
    for value in values or ():
        try:
            channels.add(Channel(value))
        except ValueError as exc:
            raise InvalidArgument(f"Unknown delivery channel: {value!r}") from exc
    return frozenset(channels)


def failed(reason: str) -> str:
    return f"failed:{reason}"


def skipped(reason: str) -> str:
    return f"skipped:{reason}"


@dataclass(frozen=True)
class Notification:
    """Message addressed to one recipient, with its lifecycle state."""

    id: str
    recipient_id: str
    message: MessageContent
    channel_hints: frozenset[Channel] = frozenset()
    status: NotificationStatus = NotificationStatus.ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None
    delivery_outcomes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationPatch:
    """Non-lifecycle fields that an update may replace."""

    message: MessageContent | None = None

    def is_empty(self) -> bool:
        return self.message is None


__all__ = [
    "Channel",
    "MessageContent",
    "Notification",
    "NotificationPatch",
    "NotificationStatus",
    "OUTCOME_DELIVERED",
    "failed",
    "parse_channels",
    "skipped",
]
