"""Persistence helpers for notification entities."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notification_service.domain.entities import (
    Notification,
    NotificationStatus,
    parse_channels,
)
from notification_service.domain.entities.notification import MessageContent
from notification_service.infrastructure.models import (
    NotificationDeliveryModel,
    NotificationModel,
)
from notification_service.utils import ensure_naive_utc, ensure_utc


def _not_before(at: datetime):
    """Write ``at`` unless the row already carries a later timestamp."""

    stamp = ensure_naive_utc(at)
    return case(
        (NotificationModel.updated_at > stamp, NotificationModel.updated_at),
        else_=stamp,
    )


class NotificationRepository:
    """Provide row-level operations for :class:`Notification` objects.

    Every mutating method commits its own short transaction and touches a
    single notification row, so operations on different ids never contend.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, notification: Notification) -> Notification:
        model = NotificationModel(
            id=notification.id,
            recipient_id=notification.recipient_id,
            message=notification.message,
            channel_hints=sorted(channel.value for channel in notification.channel_hints),
            status=notification.status.value,
            created_at=ensure_naive_utc(notification.created_at),
            updated_at=ensure_naive_utc(notification.updated_at),
        )
        self.session.add(model)
        self.session.commit()
        self.session.refresh(model)
        return self._to_entity(model)

    def get(self, notification_id: str) -> Notification | None:
        model = self.session.get(NotificationModel, notification_id, populate_existing=True)
        if model is None:
            return None
        return self._to_entity(model)

    def exists(self, notification_id: str) -> bool:
        query = self.session.query(NotificationModel.id).filter(
            NotificationModel.id == notification_id
        )
        return self.session.query(query.exists()).scalar()

    def list_for_recipient(
        self,
        recipient_id: str,
        *,
        status: NotificationStatus | None = None,
        limit: int | None = 50,
    ) -> Sequence[Notification]:
        query = self.session.query(NotificationModel)
        query = query.filter(NotificationModel.recipient_id == recipient_id)
        if status is not None:
            query = query.filter(NotificationModel.status == status.value)
        query = query.order_by(
            NotificationModel.created_at.desc(), NotificationModel.id.desc()
        )
        if limit is not None:
            query = query.limit(limit)
        return [self._to_entity(model) for model in query.all()]

    def compare_and_set_status(
        self,
        notification_id: str,
        *,
        expected: NotificationStatus,
        new: NotificationStatus,
        at: datetime,
    ) -> bool:
        """Move ``notification_id`` from ``expected`` to ``new`` in one statement.

        Returns ``True`` only for the caller whose statement matched the row.
        """

        updated = (
            self.session.query(NotificationModel)
            .filter(
                NotificationModel.id == notification_id,
                NotificationModel.status == expected.value,
            )
            .update(
                {
                    NotificationModel.status: new.value,
                    NotificationModel.updated_at: _not_before(at),
                },
                synchronize_session=False,
            )
        )
        self.session.commit()
        return updated == 1

    def replace_message_if_active(
        self, notification_id: str, *, message: MessageContent, at: datetime
    ) -> bool:
        updated = (
            self.session.query(NotificationModel)
            .filter(
                NotificationModel.id == notification_id,
                NotificationModel.status == NotificationStatus.ACTIVE.value,
            )
            .update(
                {
                    NotificationModel.message: message,
                    NotificationModel.updated_at: _not_before(at),
                },
                synchronize_session=False,
            )
        )
        self.session.commit()
        return updated == 1

    def upsert_delivery_outcome(
        self, notification_id: str, *, channel: str, outcome: str, at: datetime
    ) -> bool:
        """Store ``outcome`` as the latest attempt for ``channel``.

        Returns ``False`` when the notification does not exist.
        """

        if self._update_outcome(notification_id, channel, outcome, at):
            return True
        if not self.exists(notification_id):
            return False

        self.session.add(
            NotificationDeliveryModel(
                notification_id=notification_id,
                channel=channel,
                outcome=outcome,
                attempted_at=ensure_naive_utc(at),
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            # Another writer inserted the row first; overwrite it instead.
            self.session.rollback()
            return self._update_outcome(notification_id, channel, outcome, at)
        return True

    def _update_outcome(
        self, notification_id: str, channel: str, outcome: str, at: datetime
    ) -> bool:
        updated = (
            self.session.query(NotificationDeliveryModel)
            .filter(
                NotificationDeliveryModel.notification_id == notification_id,
                NotificationDeliveryModel.channel == channel,
            )
            .update(
                {
                    NotificationDeliveryModel.outcome: outcome,
                    NotificationDeliveryModel.attempted_at: ensure_naive_utc(at),
                },
                synchronize_session=False,
            )
        )
        self.session.commit()
        return updated > 0

    @staticmethod
    def _to_entity(model: NotificationModel) -> Notification:
        return Notification(
            id=model.id,
            recipient_id=model.recipient_id,
            message=model.message,
            channel_hints=parse_channels(model.channel_hints or []),
            status=NotificationStatus(model.status),
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
            delivery_outcomes={
                delivery.channel: delivery.outcome for delivery in model.deliveries
            },
        )


__all__ = ["NotificationRepository"]
