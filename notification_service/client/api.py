"""Async HTTP client for the notification API."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import httpx

from notification_service.domain.entities import MessageContent, NotificationStatus
from notification_service.domain.errors import (
    Conflict,
    InvalidArgument,
    NotFound,
    NotificationError,
)

logger = logging.getLogger(__name__)


class ApiUnavailable(NotificationError):
    """The API could not be reached or answered with a server error."""


class ApiRejected(NotificationError):
    """The API refused the request for a reason the caller cannot fix by retrying."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"API responded with status {status_code}: {detail}")
        self.status_code = status_code


def _detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and "detail" in payload:
        return str(payload["detail"])
    return str(payload)


class NotificationApiClient:
    """Thin wrapper that maps HTTP responses onto the notification error taxonomy."""

    def __init__(
        self,
        base_url: str = "",
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "NotificationApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def create(
        self,
        recipient_id: str,
        message: MessageContent,
        channel_hints: Iterable[str] = (),
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/notifications/",
            json={
                "recipient_id": recipient_id,
                "message": message,
                "channel_hints": list(channel_hints),
            },
        )

    async def get(self, notification_id: str) -> dict[str, Any]:
        return await self._request(
            "GET", f"/notifications/{notification_id}", notification_id=notification_id
        )

    async def list_notifications(
        self, status: NotificationStatus | None = None
    ) -> list[dict[str, Any]]:
        params = {"status": status.value} if status is not None else None
        return await self._request("GET", "/notifications/", params=params)

    async def dismiss(self, notification_id: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/notifications/{notification_id}/dismiss",
            notification_id=notification_id,
        )

    async def update(self, notification_id: str, message: MessageContent) -> dict[str, Any]:
        return await self._request(
            "PATCH",
            f"/notifications/{notification_id}",
            json={"message": message},
            notification_id=notification_id,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        notification_id: str = "",
        **kwargs: Any,
    ) -> Any:
        try:
            response = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed before a response arrived: %s", method, path, exc)
            raise ApiUnavailable(str(exc)) from exc

        if response.is_success:
            return response.json()

        detail = _detail(response)
        code = response.status_code
        if code in (400, 422):
            raise InvalidArgument(detail)
        if code == 404:
            raise NotFound(notification_id)
        if code == 409:
            raise Conflict(notification_id, detail)
        if code >= 500:
            raise ApiUnavailable(f"API responded with status {code}: {detail}")
        raise ApiRejected(code, detail)


__all__ = ["ApiRejected", "ApiUnavailable", "NotificationApiClient"]
