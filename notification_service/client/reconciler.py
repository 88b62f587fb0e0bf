"""Client-side notification state with optimistic updates and rollback.

The reconciler keeps a local view of the caller's notifications. Every
create, dismiss or update is applied locally first and recorded as a pending
operation keyed by a client-generated correlation id; when the server answers
the entry is replaced by the server record, and when the call fails the
previous state is restored. Server-side effects are never undone: a call that
is abandoned only reverts the local view.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Hashable, Protocol

from notification_service.client.api import ApiUnavailable
from notification_service.domain.entities import MessageContent, NotificationStatus
from notification_service.domain.errors import (
    Conflict,
    InvalidArgument,
    NotFound,
    NotificationError,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."


class NotificationApi(Protocol):
    async def create(
        self, recipient_id: str, message: MessageContent, channel_hints: Any = ()
    ) -> dict[str, Any]:
        ...

    async def get(self, notification_id: str) -> dict[str, Any]:
        ...

    async def list_notifications(
        self, status: NotificationStatus | None = None
    ) -> list[dict[str, Any]]:
        ...

    async def dismiss(self, notification_id: str) -> dict[str, Any]:
        ...

    async def update(self, notification_id: str, message: MessageContent) -> dict[str, Any]:
        ...


@dataclass(frozen=True)
class NotificationSpec:
    """What a caller asks to show. ``duration`` is in seconds."""

    recipient_id: str
    message: MessageContent
    channel_hints: tuple[str, ...] = ()
    duration: float | None = None


@dataclass(frozen=True)
class LocalNotification:
    key: str
    recipient_id: str
    message: MessageContent
    status: NotificationStatus = NotificationStatus.ACTIVE
    server_id: str | None = None
    pending: bool = False
    updated_at: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.server_id is not None


@dataclass
class PendingOperation:
    correlation_id: str
    kind: str
    key: str
    previous: LocalNotification | None = None


@dataclass(frozen=True)
class ClientError:
    """Error shown to the user; per-channel delivery failures never end up here."""

    message: str
    retryable: bool
    correlation_id: str


@dataclass
class _Timer:
    owner: Hashable | None
    task: asyncio.Task[None] = field(repr=False)


def _from_record(record: dict[str, Any]) -> LocalNotification:
    return LocalNotification(
        key=record["id"],
        recipient_id=record["recipient_id"],
        message=record["message"],
        status=NotificationStatus(record["status"]),
        server_id=record["id"],
        updated_at=record.get("updated_at"),
    )


class NotificationReconciler:
    """Keep local notification state consistent with the server."""

    def __init__(self, api: NotificationApi) -> None:
        self._api = api
        self._entries: dict[str, LocalNotification] = {}
        self._pending: dict[str, PendingOperation] = {}
        self._dismissals: dict[str, asyncio.Future[LocalNotification | None]] = {}
        self._timers: dict[str, _Timer] = {}
        self.error: ClientError | None = None

    def get(self, key: str) -> LocalNotification | None:
        return self._entries.get(key)

    def entries(self) -> list[LocalNotification]:
        return list(self._entries.values())

    def visible(self) -> list[LocalNotification]:
        """Entries the UI should render right now."""

        return [entry for entry in self._entries.values() if entry.status is NotificationStatus.ACTIVE]

    def pending_operations(self) -> tuple[PendingOperation, ...]:
        return tuple(self._pending.values())

    def has_timer(self, key: str) -> bool:
        return key in self._timers

    def clear_error(self) -> None:
        self.error = None

    async def trigger(
        self, spec: NotificationSpec, *, owner: Hashable | None = None
    ) -> LocalNotification | None:
        """Show ``spec`` immediately and create it on the server."""

        correlation_id = uuid.uuid4().hex
        self._entries[correlation_id] = LocalNotification(
            key=correlation_id,
            recipient_id=spec.recipient_id,
            message=spec.message,
            pending=True,
        )
        operation = PendingOperation(correlation_id, "create", correlation_id)
        self._pending[correlation_id] = operation
        try:
            record = await self._api.create(spec.recipient_id, spec.message, spec.channel_hints)
        except NotificationError as exc:
            self._entries.pop(correlation_id, None)
            self._fail(operation, exc)
            return None
        except asyncio.CancelledError:
            self._entries.pop(correlation_id, None)
            raise
        finally:
            self._pending.pop(correlation_id, None)

        optimistic = self._entries.pop(correlation_id, None)
        confirmed = self._store(record)
        if optimistic is not None and optimistic.status is NotificationStatus.DISMISSED:
            # Dismissed locally before the server knew about it.
            return await self.dismiss(confirmed.key)
        if spec.duration:
            self._schedule_expiry(confirmed.key, spec.duration, owner)
        return confirmed

    async def dismiss(self, key: str) -> LocalNotification | None:
        """Hide ``key`` immediately and dismiss it on the server.

        Clicks that arrive while a dismissal is in flight join that call.
        """

        in_flight = self._dismissals.get(key)
        if in_flight is not None:
            return await asyncio.shield(in_flight)

        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.confirmed:
            self._entries[key] = replace(entry, status=NotificationStatus.DISMISSED)
            return self._entries[key]
        if entry.status is NotificationStatus.DISMISSED and not entry.pending:
            return entry

        self._cancel_timer(key)
        operation = PendingOperation(uuid.uuid4().hex, "dismiss", key, previous=entry)
        self._pending[operation.correlation_id] = operation
        self._entries[key] = replace(entry, status=NotificationStatus.DISMISSED, pending=True)
        outcome: asyncio.Future[LocalNotification | None] = (
            asyncio.get_running_loop().create_future()
        )
        self._dismissals[key] = outcome

        result: LocalNotification | None = None
        try:
            record = await self._api.dismiss(entry.server_id)
        except NotFound:
            self._entries.pop(key, None)
        except NotificationError as exc:
            self._entries[key] = entry
            self._fail(operation, exc)
        except asyncio.CancelledError:
            self._entries[key] = entry
            outcome.cancel()
            raise
        except Exception as exc:
            # Joined callers see the same failure.
            self._entries[key] = entry
            outcome.set_exception(exc)
            outcome.exception()
            raise
        else:
            result = self._store(record)
        finally:
            self._pending.pop(operation.correlation_id, None)
            self._dismissals.pop(key, None)

        outcome.set_result(result)
        return result

    async def update(self, key: str, message: MessageContent) -> LocalNotification | None:
        """Replace the message of ``key`` locally, then on the server."""

        entry = self._entries.get(key)
        if entry is None or not entry.confirmed:
            return None

        operation = PendingOperation(uuid.uuid4().hex, "update", key, previous=entry)
        self._pending[operation.correlation_id] = operation
        self._entries[key] = replace(entry, message=message, pending=True)
        try:
            record = await self._api.update(entry.server_id, message)
        except Conflict as exc:
            self._fail(operation, exc)
            return await self._refetch(key, entry)
        except NotFound:
            self._entries.pop(key, None)
            return None
        except NotificationError as exc:
            self._entries[key] = entry
            self._fail(operation, exc)
            return None
        except asyncio.CancelledError:
            self._entries[key] = entry
            raise
        finally:
            self._pending.pop(operation.correlation_id, None)
        return self._store(record)

    async def refresh(self) -> list[LocalNotification]:
        """Pull server state for every entry without a pending operation."""

        try:
            records = await self._api.list_notifications()
        except NotificationError as exc:
            self._fail(PendingOperation(uuid.uuid4().hex, "refresh", ""), exc)
            return self.visible()

        busy = {operation.key for operation in self._pending.values()}
        for record in records:
            if record["id"] in busy:
                continue
            self._store(record)
        return self.visible()

    def unmount(self, owner: Hashable) -> int:
        """Cancel every expiry timer scheduled on behalf of ``owner``."""

        keys = [key for key, timer in self._timers.items() if timer.owner == owner]
        for key in keys:
            self._cancel_timer(key)
        return len(keys)

    async def close(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.task.cancel()
        await asyncio.gather(*(timer.task for timer in timers), return_exceptions=True)

    async def _refetch(self, key: str, fallback: LocalNotification) -> LocalNotification | None:
        try:
            record = await self._api.get(fallback.server_id)
        except NotFound:
            self._entries.pop(key, None)
            return None
        except NotificationError as exc:
            logger.warning("Could not re-fetch notification %s: %s", fallback.server_id, exc)
            self._entries[key] = fallback
            return fallback
        return self._store(record)

    def _store(self, record: dict[str, Any]) -> LocalNotification:
        entry = _from_record(record)
        self._entries[entry.key] = entry
        if entry.status is NotificationStatus.DISMISSED:
            self._cancel_timer(entry.key)
        return entry

    def _schedule_expiry(self, key: str, duration: float, owner: Hashable | None) -> None:
        self._cancel_timer(key)
        task = asyncio.get_running_loop().create_task(self._expire_after(key, duration))
        self._timers[key] = _Timer(owner=owner, task=task)

    async def _expire_after(self, key: str, duration: float) -> None:
        await asyncio.sleep(duration)
        self._timers.pop(key, None)
        await self.dismiss(key)

    def _cancel_timer(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.task.cancel()

    def _fail(self, operation: PendingOperation, exc: Exception) -> None:
        logger.warning("Notification %s of %s failed: %s", operation.kind, operation.key, exc)
        self.error = ClientError(
            message=GENERIC_ERROR,
            retryable=isinstance(exc, (InvalidArgument, ApiUnavailable)),
            correlation_id=operation.correlation_id,
        )


__all__ = [
    "ClientError",
    "GENERIC_ERROR",
    "LocalNotification",
    "NotificationApi",
    "NotificationReconciler",
    "NotificationSpec",
    "PendingOperation",
]
