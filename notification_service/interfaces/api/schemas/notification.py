"""Pydantic models describing notification payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notification_service.domain.entities import Channel, NotificationStatus

MESSAGE_MAX_LENGTH = 1000

MessagePayload = Union[str, dict[str, Any]]


def _validate_message(value: MessagePayload) -> MessagePayload:
    if isinstance(value, str):
        if not value.strip():
            raise ValueError("message must not be empty")
        if len(value) > MESSAGE_MAX_LENGTH:
            raise ValueError(f"message must be at most {MESSAGE_MAX_LENGTH} characters")
    elif not value:
        raise ValueError("message must not be empty")
    return value


class NotificationCreate(BaseModel):
    """Payload used to originate a notification."""

    model_config = ConfigDict(extra="forbid")

    recipient_id: str = Field(..., description="Identifier of the addressed user")
    message: MessagePayload = Field(..., description="Display payload")
    channel_hints: list[Channel] = Field(
        default_factory=list, description="Requested delivery channels"
    )

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: MessagePayload) -> MessagePayload:
        return _validate_message(value)


class NotificationUpdate(BaseModel):
    """Patch limited to non-lifecycle metadata."""

    model_config = ConfigDict(extra="forbid")

    message: MessagePayload | None = None

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: MessagePayload | None) -> MessagePayload | None:
        if value is None:
            return value
        return _validate_message(value)


class NotificationRead(BaseModel):
    """Representation of a notification delivered to the client."""

    id: str
    recipient_id: str
    message: MessagePayload
    channel_hints: list[Channel] = Field(default_factory=list)
    status: NotificationStatus
    created_at: datetime
    updated_at: datetime
    delivery_outcomes: dict[str, str] = Field(default_factory=dict)


class HealthRead(BaseModel):
    status: str
    email: str
    live_connections: int


__all__ = [
    "HealthRead",
    "MESSAGE_MAX_LENGTH",
    "NotificationCreate",
    "NotificationRead",
    "NotificationUpdate",
]
