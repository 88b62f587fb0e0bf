"""Authoritative, concurrency-safe home for notification lifecycle state."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from typing import Callable

from sqlalchemy.orm import Session

from notification_service.domain.entities import (
    Channel,
    MessageContent,
    Notification,
    NotificationPatch,
    NotificationStatus,
    parse_channels,
)
from notification_service.domain.errors import Conflict, InvalidArgument, NotFound
from notification_service.infrastructure.repositories import NotificationRepository
from notification_service.utils import now_utc

logger = logging.getLogger(__name__)


class NotificationStore:
    """Own the ``ACTIVE -> DISMISSED`` state machine for notification records.

    Each operation opens its own session. Transitions are compare-and-set
    statements on a single row, so two callers racing on the same id are
    serialized by the database while unrelated ids never wait on each other.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create(
        self,
        recipient_id: str,
        message: MessageContent,
        channel_hints: Iterable[str | Channel] | None = None,
    ) -> Notification:
        if not isinstance(recipient_id, str) or not recipient_id.strip():
            raise InvalidArgument("recipient_id must be a non-empty string")

        channels = parse_channels(channel_hints)
        now = now_utc()
        notification = Notification(
            id=uuid.uuid4().hex,
            recipient_id=recipient_id.strip(),
            message=message,
            channel_hints=channels,
            status=NotificationStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as session:
            saved = NotificationRepository(session).add(notification)
        logger.info(
            "Created notification %s for recipient %s (channels: %s)",
            saved.id,
            saved.recipient_id,
            ",".join(sorted(channel.value for channel in channels)) or "none",
        )
        return saved

    def get(self, notification_id: str) -> Notification:
        with self._session_factory() as session:
            notification = NotificationRepository(session).get(notification_id)
        if notification is None:
            raise NotFound(notification_id)
        return notification

    def list_for_recipient(
        self,
        recipient_id: str,
        *,
        status: NotificationStatus | None = None,
        limit: int | None = 50,
    ) -> Sequence[Notification]:
        with self._session_factory() as session:
            return NotificationRepository(session).list_for_recipient(
                recipient_id, status=status, limit=limit
            )

    def dismiss(self, notification_id: str) -> Notification:
        """Dismiss ``notification_id``; dismissing twice returns the same record."""

        with self._session_factory() as session:
            repository = NotificationRepository(session)
            transitioned = repository.compare_and_set_status(
                notification_id,
                expected=NotificationStatus.ACTIVE,
                new=NotificationStatus.DISMISSED,
                at=now_utc(),
            )
            current = repository.get(notification_id)

        if current is None:
            raise NotFound(notification_id)
        if transitioned:
            logger.info("Dismissed notification %s", notification_id)
        else:
            logger.debug("Notification %s was already dismissed", notification_id)
        return current

    def update(self, notification_id: str, patch: NotificationPatch) -> Notification:
        if patch.is_empty():
            raise InvalidArgument("Update must change at least one field")

        with self._session_factory() as session:
            repository = NotificationRepository(session)
            applied = repository.replace_message_if_active(
                notification_id, message=patch.message, at=now_utc()
            )
            current = repository.get(notification_id)

        if current is None:
            raise NotFound(notification_id)
        if not applied:
            raise Conflict(notification_id)
        return current

    def record_delivery_outcome(
        self, notification_id: str, channel: str | Channel, outcome: str
    ) -> None:
        """Annotate the latest delivery attempt; unknown ids are only logged."""

        channel_name = Channel(channel).value
        with self._session_factory() as session:
            recorded = NotificationRepository(session).upsert_delivery_outcome(
                notification_id, channel=channel_name, outcome=outcome, at=now_utc()
            )
        if not recorded:
            logger.warning(
                "Dropped %s outcome %r for unknown notification %s",
                channel_name,
                outcome,
                notification_id,
            )


__all__ = ["NotificationStore"]
