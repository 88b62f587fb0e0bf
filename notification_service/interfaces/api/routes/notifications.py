"""Endpoints and websocket handler for notifications."""

from __future__ import annotations

import logging

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from notification_service.application.use_cases import NotificationDispatcher
from notification_service.domain.entities import (
    Notification,
    NotificationPatch,
    NotificationStatus,
)
from notification_service.domain.errors import Conflict, InvalidArgument, NotFound
from notification_service.infrastructure.notifications import serialize_notification
from notification_service.infrastructure.security import recipient_from_token
from notification_service.interfaces.api.dependencies import (
    get_current_recipient,
    get_dispatcher,
)
from notification_service.interfaces.api.schemas import (
    NotificationCreate,
    NotificationRead,
    NotificationUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_to_schema(notification: Notification) -> NotificationRead:
    return NotificationRead(
        id=notification.id,
        recipient_id=notification.recipient_id,
        message=notification.message,
        channel_hints=sorted(notification.channel_hints, key=lambda channel: channel.value),
        status=notification.status,
        created_at=notification.created_at,
        updated_at=notification.updated_at,
        delivery_outcomes=dict(notification.delivery_outcomes),
    )


@router.post("/", response_model=NotificationRead, status_code=status.HTTP_201_CREATED)
async def create_notification(
    notification_in: NotificationCreate,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    _: str = Depends(get_current_recipient),
) -> NotificationRead:
    """Create a notification and fan it out to the requested channels."""

    try:
        notification = await dispatcher.create(
            notification_in.recipient_id,
            notification_in.message,
            notification_in.channel_hints,
        )
    except InvalidArgument as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _notification_to_schema(notification)


@router.get("/", response_model=list[NotificationRead])
async def list_notifications(
    status_filter: NotificationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    recipient_id: str = Depends(get_current_recipient),
) -> list[NotificationRead]:
    """Return the most recent notifications for the authenticated recipient."""

    notifications = await dispatcher.list_for_recipient(
        recipient_id, status=status_filter, limit=limit
    )
    return [_notification_to_schema(notification) for notification in notifications]


@router.get("/{notification_id}", response_model=NotificationRead)
async def get_notification(
    notification_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    _: str = Depends(get_current_recipient),
) -> NotificationRead:
    try:
        notification = await dispatcher.get(notification_id)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _notification_to_schema(notification)


@router.post("/{notification_id}/dismiss", response_model=NotificationRead)
async def dismiss_notification(
    notification_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    _: str = Depends(get_current_recipient),
) -> NotificationRead:
    """Dismiss a notification. Dismissing it again returns the same record."""

    try:
        notification = await dispatcher.dismiss(notification_id)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _notification_to_schema(notification)


@router.patch("/{notification_id}", response_model=NotificationRead)
async def update_notification(
    notification_id: str,
    notification_in: NotificationUpdate,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    _: str = Depends(get_current_recipient),
) -> NotificationRead:
    update_data = notification_in.model_dump(exclude_unset=True)
    patch = NotificationPatch(message=update_data.get("message"))

    try:
        notification = await dispatcher.update(notification_id, patch)
    except InvalidArgument as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Conflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _notification_to_schema(notification)


@router.websocket("/ws")
async def notifications_websocket(websocket: WebSocket) -> None:
    """Websocket endpoint that streams notifications to the authenticated recipient."""

    state = websocket.app.state
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=1008)
        return

    try:
        recipient_id = recipient_from_token(token, state.settings.secret_key)
    except ValueError:
        await websocket.close(code=1008)
        return

    dispatcher: NotificationDispatcher = state.dispatcher
    connection = await state.push_transport.accept(websocket, recipient_id)
    state.registry.register(recipient_id, connection)
    try:
        active = await dispatcher.list_for_recipient(
            recipient_id, status=NotificationStatus.ACTIVE
        )
        await websocket.send_json(
            {"type": "init", "data": [serialize_notification(n) for n in active]}
        )
        while True:
            try:
                message = await websocket.receive_json()
            except WebSocketDisconnect:
                raise
            except (KeyError, ValueError):
                await websocket.send_json({"type": "error", "error": "invalid-json"})
                continue

            if not isinstance(message, dict):
                continue

            message_type = message.get("type")
            if message_type == "ping":
                await websocket.send_json({"type": "pong"})
                continue

            if message_type == "dismiss":
                notification_id = message.get("id")
                if not isinstance(notification_id, str) or not notification_id:
                    await websocket.send_json({"type": "error", "error": "missing-id"})
                    continue
                try:
                    dismissed = await dispatcher.dismiss(notification_id)
                except NotFound:
                    await websocket.send_json(
                        {"type": "error", "error": "not-found", "id": notification_id}
                    )
                    continue
                await websocket.send_json(
                    {"type": "dismissed", "data": serialize_notification(dismissed)}
                )
                continue

            await websocket.send_json({"type": "error", "error": "unsupported-message-type"})
    except WebSocketDisconnect:
        logger.debug("Recipient %s closed push connection", recipient_id)
    finally:
        state.registry.unregister(connection)
        await state.push_transport.release(connection)
