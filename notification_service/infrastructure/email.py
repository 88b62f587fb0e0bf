"""Email transports used to deliver notifications.

Two backends are available: SMTP submission through ``aiosmtplib`` and the
SendGrid REST API. Both verify that the submission endpoint is reachable
before handing over a message, and both classify failures as
:class:`TransientError` or :class:`PermanentError` without retrying; retry
policy belongs to the dispatcher.
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any

import aiosmtplib
import anyio
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from notification_service.config import Settings
from notification_service.domain.entities import Notification
from notification_service.domain.errors import (
    EmailEndpointUnavailable,
    PermanentError,
    TransientError,
)
from notification_service.utils import iso_or_none

logger = logging.getLogger(__name__)

_MAILER_HEADERS = {
    "X-Application": "Task Management System",
    "X-Service": "Notification Service",
    "X-Mailer": "Task Management Notification Service",
}


class EmailTransport(ABC):
    """Deliver a single message to a single address."""

    @abstractmethod
    async def send_email(self, address: str, subject: str, body: str) -> None:
        """Verify connectivity, then submit the message."""


def _ensure_address(address: str) -> None:
    local, _, domain = (address or "").partition("@")
    if not local or not domain:
        raise PermanentError(f"Invalid email address: {address!r}", reason="invalid-address")


def _classify_code(code: int | None, message: str) -> TransientError | PermanentError:
    if code is not None and 400 <= code < 500:
        return TransientError(message, reason=f"smtp-{code}")
    if code is not None and code >= 500:
        return PermanentError(message, reason=f"smtp-{code}")
    return TransientError(message, reason="smtp-error")


class SMTPEmailTransport(EmailTransport):
    """Submit messages to an SMTP server with ``aiosmtplib``."""

    def __init__(
        self,
        *,
        hostname: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
        start_tls: bool | None = True,
        timeout: float = 30.0,
    ) -> None:
        self._hostname = hostname
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._start_tls = start_tls
        self._timeout = timeout

    def _client(self) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self._hostname,
            port=self._port,
            use_tls=self._use_tls,
            start_tls=self._start_tls,
            timeout=self._timeout,
        )

    async def _open(self) -> aiosmtplib.SMTP:
        smtp = self._client()
        try:
            await smtp.connect()
            if self._username:
                await smtp.login(self._username, self._password or "")
        except aiosmtplib.SMTPAuthenticationError as exc:
            await self._close(smtp)
            if exc.code is not None and 400 <= exc.code < 500:
                raise EmailEndpointUnavailable(str(exc)) from exc
            raise PermanentError(
                f"SMTP authentication failed: {exc}", reason="smtp-auth-rejected"
            ) from exc
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            await self._close(smtp)
            raise EmailEndpointUnavailable(
                f"SMTP server {self._hostname}:{self._port} unavailable: {exc}"
            ) from exc
        return smtp

    @staticmethod
    async def _close(smtp: aiosmtplib.SMTP) -> None:
        if not smtp.is_connected:
            return
        try:
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.debug("Ignoring error while closing SMTP connection: %s", exc)
            smtp.close()

    def _build_message(self, address: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = address
        message["Subject"] = subject
        for header, value in _MAILER_HEADERS.items():
            message[header] = value
        message.set_content("This notification is best viewed in an HTML capable client.")
        message.add_alternative(body, subtype="html")
        return message

    async def send_email(self, address: str, subject: str, body: str) -> None:
        _ensure_address(address)
        smtp = await self._open()
        try:
            await smtp.send_message(self._build_message(address, subject, body))
        except aiosmtplib.SMTPRecipientsRefused as exc:
            codes = [refusal.code for refusal in exc.recipients]
            if codes and all(400 <= code < 500 for code in codes):
                raise TransientError(str(exc), reason="recipient-deferred") from exc
            raise PermanentError(str(exc), reason="recipient-refused") from exc
        except aiosmtplib.SMTPResponseException as exc:
            raise _classify_code(exc.code, exc.message) from exc
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            raise TransientError(str(exc), reason="smtp-disconnected") from exc
        finally:
            await self._close(smtp)
        logger.info("Email sent successfully to %s", address)


def _sendgrid_details(source: Any) -> str:
    """Describe the error payload carried by a SendGrid exception or response."""

    body = getattr(source, "body", None)
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        text = body.strip()
        try:
            body = json.loads(text) if text else None
        except json.JSONDecodeError:
            return text

    if isinstance(body, dict) and isinstance(body.get("errors"), list):
        return "; ".join(
            f"{item['field']}: {item['message']}" if item.get("field") else str(item["message"])
            for item in body["errors"]
            if isinstance(item, dict) and item.get("message")
        )
    if isinstance(body, list):
        return "; ".join(str(item) for item in body)
    return json.dumps(body) if body else ""


def _sendgrid_failure(source: Any, fallback: str = "") -> TransientError | PermanentError:
    """Classify a failed SendGrid call: throttling and 5xx are worth retrying."""

    status_code = getattr(source, "status_code", None)
    details = _sendgrid_details(source) or fallback
    logger.error("SendGrid API request failed with status %s: %s", status_code, details)
    if not isinstance(status_code, int):
        return TransientError(details, reason="sendgrid-unreachable")
    if status_code == 429 or status_code >= 500:
        return TransientError(details, reason=f"sendgrid-{status_code}")
    return PermanentError(details, reason=f"sendgrid-{status_code}")


class SendGridEmailTransport(EmailTransport):
    """Submit messages through the SendGrid v3 API.

    The SendGrid client is blocking, so every call runs in a worker thread.
    """

    def __init__(self, *, api_key: str, sender: str, client: SendGridAPIClient | None = None) -> None:
        self._sender = sender
        self._client = client or SendGridAPIClient(api_key)

    async def _verify_endpoint(self) -> None:
        try:
            response = await anyio.to_thread.run_sync(self._client.client.scopes.get)
        except Exception as exc:
            details = _sendgrid_details(exc) or str(exc)
            if getattr(exc, "status_code", None) in (401, 403):
                raise PermanentError(details, reason="sendgrid-auth-rejected") from exc
            raise EmailEndpointUnavailable(f"SendGrid API unavailable: {details}") from exc
        status_code = getattr(response, "status_code", None)
        if not isinstance(status_code, int) or not 200 <= status_code < 300:
            raise EmailEndpointUnavailable(f"SendGrid API responded with status {status_code}")

    async def send_email(self, address: str, subject: str, body: str) -> None:
        _ensure_address(address)
        await self._verify_endpoint()

        message = Mail(
            from_email=self._sender,
            to_emails=address,
            subject=subject,
            html_content=body,
        )
        try:
            response = await anyio.to_thread.run_sync(self._client.send, message)
        except Exception as exc:
            raise _sendgrid_failure(exc, fallback=str(exc)) from exc

        status_code = getattr(response, "status_code", None)
        if not isinstance(status_code, int) or not 200 <= status_code < 300:
            raise _sendgrid_failure(response)
        logger.info("Email sent successfully to %s", address)


def build_email_transport(settings: Settings) -> EmailTransport | None:
    """Return the configured email transport, or ``None`` when email is disabled.

    Missing credentials are a configuration fault, reported once here rather
    than on every message.
    """

    if settings.email_backend == "sendgrid":
        if not (settings.sendgrid_api_key and settings.sendgrid_sender):
            logger.warning("SendGrid configuration incomplete; email channel disabled")
            return None
        return SendGridEmailTransport(
            api_key=settings.sendgrid_api_key, sender=settings.sendgrid_sender
        )

    missing = [
        name
        for name, value in (
            ("SMTP_HOST", settings.smtp_host),
            ("SMTP_USERNAME", settings.smtp_username),
            ("SMTP_PASSWORD", settings.smtp_password),
            ("EMAIL_FROM", settings.email_from),
        )
        if not value
    ]
    if missing:
        logger.warning(
            "SMTP configuration incomplete (missing %s); email channel disabled",
            ", ".join(missing),
        )
        return None
    return SMTPEmailTransport(
        hostname=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.email_from,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        start_tls=None if settings.smtp_use_tls else settings.smtp_start_tls,
        timeout=settings.smtp_timeout_seconds,
    )


def render_notification_email(notification: Notification) -> str:
    """Return the HTML body used for notification emails."""

    message = notification.message
    if isinstance(message, dict):
        text = message.get("text") or message.get("title") or json.dumps(message)
    else:
        text = str(message)
    return "".join(
        (
            "<div>",
            "<h2>New Notification</h2>",
            f"<p>{html.escape(str(text))}</p>",
            "<hr>",
            f"<small>Sent at: {iso_or_none(notification.created_at)}</small>",
            "</div>",
        )
    )


__all__ = [
    "EmailTransport",
    "SMTPEmailTransport",
    "SendGridEmailTransport",
    "build_email_transport",
    "render_notification_email",
]
