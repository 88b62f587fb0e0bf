"""Orchestrate notification creation and channel fan-out."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Hashable, Iterable, Sequence
from typing import Any, Protocol

import anyio

from notification_service.domain.entities import (
    OUTCOME_DELIVERED,
    Channel,
    MessageContent,
    Notification,
    NotificationPatch,
    NotificationStatus,
    failed,
    skipped,
)
from notification_service.domain.errors import (
    ConnectionClosed,
    EmailEndpointUnavailable,
    PermanentError,
    TransientError,
)
from notification_service.infrastructure.email import EmailTransport, render_notification_email
from notification_service.infrastructure.notifications import (
    NotificationStore,
    RecipientDirectory,
    SubscriptionRegistry,
    notification_message,
)

logger = logging.getLogger(__name__)


class PushTransport(Protocol):
    async def send_push(self, connection: Any, payload: dict[str, Any]) -> None:
        ...


class NotificationDispatcher:
    """The only component that talks to the store, the registry and the transports.

    ``create`` persists the record and returns it straight away; delivery runs
    in a background task whose outcomes land in the store. Channel failures
    never propagate to the producer.
    """

    def __init__(
        self,
        store: NotificationStore,
        registry: SubscriptionRegistry,
        push_transport: PushTransport,
        *,
        email_transport: EmailTransport | None = None,
        directory: RecipientDirectory | None = None,
        email_subject: str = "New Notification",
        email_max_attempts: int = 3,
        email_backoff_seconds: float = 1.0,
        email_backoff_max_seconds: float = 10.0,
    ) -> None:
        if email_max_attempts < 1:
            raise ValueError("email_max_attempts must be at least 1")
        self._store = store
        self._registry = registry
        self._push = push_transport
        self._email = email_transport
        self._directory = directory
        self._email_subject = email_subject
        self._email_max_attempts = email_max_attempts
        self._email_backoff_seconds = email_backoff_seconds
        self._email_backoff_max_seconds = email_backoff_max_seconds
        self._deliveries: set[asyncio.Task[None]] = set()

    @property
    def email_enabled(self) -> bool:
        return self._email is not None

    async def create(
        self,
        recipient_id: str,
        message: MessageContent,
        channel_hints: Iterable[str | Channel] | None = None,
    ) -> Notification:
        notification = await anyio.to_thread.run_sync(
            self._store.create, recipient_id, message, channel_hints
        )
        if notification.channel_hints:
            task = asyncio.get_running_loop().create_task(self.deliver(notification))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)
        return notification

    async def get(self, notification_id: str) -> Notification:
        return await anyio.to_thread.run_sync(self._store.get, notification_id)

    async def list_for_recipient(
        self,
        recipient_id: str,
        *,
        status: NotificationStatus | None = None,
        limit: int | None = 50,
    ) -> Sequence[Notification]:
        return await anyio.to_thread.run_sync(
            functools.partial(
                self._store.list_for_recipient, recipient_id, status=status, limit=limit
            )
        )

    async def dismiss(self, notification_id: str) -> Notification:
        return await anyio.to_thread.run_sync(self._store.dismiss, notification_id)

    async def update(self, notification_id: str, patch: NotificationPatch) -> Notification:
        return await anyio.to_thread.run_sync(self._store.update, notification_id, patch)

    async def drain(self) -> None:
        """Wait for every in-flight background delivery to finish."""

        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    async def deliver(self, notification: Notification) -> None:
        """Run every requested channel for ``notification`` concurrently."""

        try:
            async with anyio.create_task_group() as group:
                if Channel.PUSH in notification.channel_hints:
                    group.start_soon(self._deliver_push, notification)
                if Channel.EMAIL in notification.channel_hints:
                    group.start_soon(self._deliver_email, notification)
        except Exception:
            logger.exception("Delivery of notification %s failed unexpectedly", notification.id)

    async def _deliver_push(self, notification: Notification) -> None:
        connections = self._registry.connections_for(notification.recipient_id)
        if not connections:
            await self._record(notification, Channel.PUSH, skipped("no-live-connection"))
            return

        payload = notification_message(notification)
        delivered = 0
        for connection in connections:
            if await self._send_push(connection, payload):
                delivered += 1

        logger.info(
            "Pushed notification %s to %s of %s connections",
            notification.id,
            delivered,
            len(connections),
        )
        outcome = OUTCOME_DELIVERED if delivered else failed(ConnectionClosed.reason)
        await self._record(notification, Channel.PUSH, outcome)

    async def _send_push(self, connection: Hashable, payload: dict[str, Any]) -> bool:
        try:
            await self._push.send_push(connection, payload)
        except ConnectionClosed:
            self._registry.unregister(connection)
            return False
        return True

    async def _deliver_email(self, notification: Notification) -> None:
        if self._email is None:
            await self._record(notification, Channel.EMAIL, skipped("email-disabled"))
            return

        address = self._directory.email_for(notification.recipient_id) if self._directory else None
        if not address:
            await self._record(notification, Channel.EMAIL, skipped("no-email-address"))
            return

        body = render_notification_email(notification)
        outcome = await self._send_email_with_retry(notification.id, address, body)
        await self._record(notification, Channel.EMAIL, outcome)

    async def _send_email_with_retry(self, notification_id: str, address: str, body: str) -> str:
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._email.send_email(address, self._email_subject, body)
            except PermanentError as exc:
                logger.error(
                    "Email for notification %s rejected permanently: %s", notification_id, exc
                )
                return failed(exc.reason)
            except TransientError as exc:
                if attempt >= self._email_max_attempts:
                    logger.error(
                        "Email for notification %s failed after %s attempts: %s",
                        notification_id,
                        attempt,
                        exc,
                    )
                    return failed(exc.reason)
                delay = self._backoff_delay(attempt)
                if isinstance(exc, EmailEndpointUnavailable):
                    logger.warning(
                        "Mail endpoint unavailable for notification %s; retrying in %.2fs",
                        notification_id,
                        delay,
                    )
                else:
                    logger.warning(
                        "Transient email failure for notification %s (attempt %s/%s): %s",
                        notification_id,
                        attempt,
                        self._email_max_attempts,
                        exc,
                    )
                await anyio.sleep(delay)
            else:
                return OUTCOME_DELIVERED

    def _backoff_delay(self, attempt: int) -> float:
        delay = self._email_backoff_seconds * (2 ** (attempt - 1))
        return min(delay, self._email_backoff_max_seconds)

    async def _record(self, notification: Notification, channel: Channel, outcome: str) -> None:
        await anyio.to_thread.run_sync(
            self._store.record_delivery_outcome, notification.id, channel, outcome
        )


__all__ = ["NotificationDispatcher", "PushTransport"]
