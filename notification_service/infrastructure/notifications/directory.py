"""Resolve recipient identifiers to email addresses."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol


class RecipientDirectory(Protocol):
    def email_for(self, recipient_id: str) -> str | None:
        ...


class StaticRecipientDirectory:
    """Look addresses up in a fixed mapping.

    A recipient id that is itself an email address resolves to itself.
    """

    def __init__(self, addresses: Mapping[str, str] | None = None) -> None:
        self._addresses = dict(addresses or {})

    def email_for(self, recipient_id: str) -> str | None:
        address = self._addresses.get(recipient_id)
        if address:
            return address
        if "@" in recipient_id:
            return recipient_id
        return None


__all__ = ["RecipientDirectory", "StaticRecipientDirectory"]
