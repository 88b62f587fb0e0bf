"""Websocket push transport for realtime notification delivery."""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream
from fastapi import WebSocket, WebSocketDisconnect

from notification_service.domain.entities import Notification
from notification_service.domain.errors import ConnectionClosed
from notification_service.utils import iso_or_none

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PushConnection:
    """Transport-owned handle for one accepted websocket."""

    recipient_id: str
    websocket: WebSocket
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    closed: bool = False


class WebSocketPushTransport:
    """Send JSON payloads over accepted websockets.

    Connections that turn out to be dead, either because the endpoint released
    them or because a send failed, are announced on :meth:`disconnections`,
    which the subscription registry consumes.
    """

    def __init__(self) -> None:
        self._disconnected_send, self._disconnected_receive = (
            anyio.create_memory_object_stream(math.inf)
        )

    async def accept(self, websocket: WebSocket, recipient_id: str) -> PushConnection:
        await websocket.accept()
        connection = PushConnection(recipient_id=recipient_id, websocket=websocket)
        logger.info(
            "Accepted push connection %s for recipient %s",
            connection.connection_id,
            recipient_id,
        )
        return connection

    async def send_push(self, connection: PushConnection, payload: dict[str, Any]) -> None:
        """Deliver ``payload``; raises :class:`ConnectionClosed` for stale handles."""

        if connection.closed:
            raise ConnectionClosed(f"Connection {connection.connection_id} is closed")
        try:
            await connection.websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.info(
                "Push connection %s failed during send: %s", connection.connection_id, exc
            )
            self._mark_closed(connection)
            raise ConnectionClosed(
                f"Connection {connection.connection_id} is closed"
            ) from exc

    async def release(self, connection: PushConnection) -> None:
        """Mark ``connection`` as gone after the endpoint stops serving it."""

        self._mark_closed(connection)

    def disconnections(self) -> MemoryObjectReceiveStream[PushConnection]:
        return self._disconnected_receive

    async def aclose(self) -> None:
        await self._disconnected_send.aclose()

    def _mark_closed(self, connection: PushConnection) -> None:
        if connection.closed:
            return
        connection.closed = True
        try:
            self._disconnected_send.send_nowait(connection)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(
                "Disconnect stream closed; dropping notice for %s", connection.connection_id
            )


def serialize_notification(notification: Notification) -> dict[str, Any]:
    """Return the JSON representation shared by the API and the websocket."""

    return {
        "id": notification.id,
        "recipient_id": notification.recipient_id,
        "message": notification.message,
        "channel_hints": sorted(channel.value for channel in notification.channel_hints),
        "status": notification.status.value,
        "created_at": iso_or_none(notification.created_at),
        "updated_at": iso_or_none(notification.updated_at),
        "delivery_outcomes": dict(notification.delivery_outcomes),
    }


def notification_message(notification: Notification) -> dict[str, Any]:
    return {"type": "notification", "data": serialize_notification(notification)}


__all__ = [
    "PushConnection",
    "WebSocketPushTransport",
    "notification_message",
    "serialize_notification",
]
