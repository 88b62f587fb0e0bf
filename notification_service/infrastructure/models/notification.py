"""SQLAlchemy models for persisted notifications and their delivery outcomes."""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from notification_service.infrastructure.database import Base


class NotificationModel(Base):
    """Database representation for user notifications."""

    __tablename__ = "notification"

    id = Column(String(32), primary_key=True)
    recipient_id = Column(String(255), nullable=False, index=True)
    message = Column(JSON, nullable=False)
    channel_hints = Column(JSON, nullable=False, default=list)
    status = Column(String(16), nullable=False, index=True)
    created_at = Column(DateTime(), nullable=False)
    updated_at = Column(DateTime(), nullable=False)

    deliveries = relationship(
        "NotificationDeliveryModel",
        lazy="selectin",
        cascade="all, delete-orphan",
        back_populates="notification",
    )

    __table_args__ = (Index("ix_notification_recipient_created", "recipient_id", "created_at"),)


class NotificationDeliveryModel(Base):
    """Last delivery outcome for one channel of a notification."""

    __tablename__ = "notification_delivery"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(
        String(32), ForeignKey("notification.id", ondelete="CASCADE"), nullable=False
    )
    channel = Column(String(16), nullable=False)
    outcome = Column(String(255), nullable=False)
    attempted_at = Column(DateTime(), nullable=False)

    notification = relationship("NotificationModel", back_populates="deliveries")

    __table_args__ = (
        UniqueConstraint("notification_id", "channel", name="uq_notification_delivery_channel"),
    )


__all__ = ["NotificationModel", "NotificationDeliveryModel"]
