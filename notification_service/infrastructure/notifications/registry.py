"""Registry of live push connections grouped by recipient."""

from __future__ import annotations

import logging
import threading
from collections.abc import AsyncIterable
from typing import Hashable

from notification_service.domain.entities import Subscription
from notification_service.utils import now_utc

logger = logging.getLogger(__name__)

_DEFAULT_STRIPES = 32


class _Stripe:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict = {}


class SubscriptionRegistry:
    """Track which live connections belong to which recipient.

    Membership is split across lock stripes chosen by the recipient id, so
    registrations for different recipients do not contend. A second set of
    stripes keyed by connection handle maps each handle back to its
    recipient for :meth:`unregister`. Locks are always taken handle stripe
    first, recipient stripe second, and are never held while sending.
    """

    def __init__(self, stripes: int = _DEFAULT_STRIPES) -> None:
        if stripes < 1:
            raise ValueError("stripes must be positive")
        self._recipients = [_Stripe() for _ in range(stripes)]
        self._owners = [_Stripe() for _ in range(stripes)]

    def register(self, recipient_id: str, connection: Hashable) -> Subscription:
        """Add ``connection`` to the set of live connections for ``recipient_id``."""

        subscription = Subscription(
            recipient_id=recipient_id, connection=connection, connected_at=now_utc()
        )
        owner_stripe = self._owner_stripe(connection)
        with owner_stripe.lock:
            previous = owner_stripe.entries.get(connection)
            if previous is not None and previous != recipient_id:
                self._discard(previous, connection)
            owner_stripe.entries[connection] = recipient_id
            stripe = self._recipient_stripe(recipient_id)
            with stripe.lock:
                stripe.entries.setdefault(recipient_id, {})[connection] = subscription
        logger.debug("Registered push connection for recipient %s", recipient_id)
        return subscription

    def unregister(self, connection: Hashable) -> bool:
        """Remove ``connection``; repeated calls are harmless."""

        owner_stripe = self._owner_stripe(connection)
        with owner_stripe.lock:
            recipient_id = owner_stripe.entries.pop(connection, None)
            if recipient_id is None:
                return False
            self._discard(recipient_id, connection)
        logger.debug("Unregistered push connection for recipient %s", recipient_id)
        return True

    def connections_for(self, recipient_id: str) -> tuple[Hashable, ...]:
        """Return a snapshot of the live connections for ``recipient_id``."""

        stripe = self._recipient_stripe(recipient_id)
        with stripe.lock:
            return tuple(stripe.entries.get(recipient_id, {}))

    def subscriptions_for(self, recipient_id: str) -> tuple[Subscription, ...]:
        stripe = self._recipient_stripe(recipient_id)
        with stripe.lock:
            return tuple(stripe.entries.get(recipient_id, {}).values())

    def count(self) -> int:
        total = 0
        for stripe in self._recipients:
            with stripe.lock:
                total += sum(len(connections) for connections in stripe.entries.values())
        return total

    async def follow(self, disconnections: AsyncIterable[Hashable]) -> None:
        """Unregister every handle a transport reports as disconnected."""

        async for connection in disconnections:
            self.unregister(connection)

    def _discard(self, recipient_id: str, connection: Hashable) -> None:
        stripe = self._recipient_stripe(recipient_id)
        with stripe.lock:
            connections = stripe.entries.get(recipient_id)
            if connections is None:
                return
            connections.pop(connection, None)
            if not connections:
                stripe.entries.pop(recipient_id, None)

    def _recipient_stripe(self, recipient_id: str) -> _Stripe:
        return self._recipients[hash(recipient_id) % len(self._recipients)]

    def _owner_stripe(self, connection: Hashable) -> _Stripe:
        return self._owners[hash(connection) % len(self._owners)]


__all__ = ["SubscriptionRegistry"]
