"""Domain entity binding a recipient to one live push connection."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Hashable


@dataclass(frozen=True)
class Subscription:
    """Ephemeral record owned by the subscription registry."""

    recipient_id: str
    connection: Hashable
    connected_at: datetime


__all__ = ["Subscription"]
