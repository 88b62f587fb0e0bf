"""Unit tests for the email transports."""

from __future__ import annotations

import json
import logging
import types
from datetime import datetime, timezone

import aiosmtplib
import pytest

from notification_service.config import Settings
from notification_service.domain.entities import Notification
from notification_service.domain.errors import (
    EmailEndpointUnavailable,
    PermanentError,
    TransientError,
)
from notification_service.infrastructure import email as email_module

pytestmark = pytest.mark.anyio


class FakeSMTP:
    """Scriptable replacement for ``aiosmtplib.SMTP``."""

    instances: list["FakeSMTP"] = []
    connect_error: Exception | None = None
    login_error: Exception | None = None
    send_error: Exception | None = None

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.is_connected = False
        self.logged_in = None
        self.messages = []
        self.quit_called = False
        FakeSMTP.instances.append(self)

    async def connect(self) -> None:
        if FakeSMTP.connect_error is not None:
            raise FakeSMTP.connect_error
        self.is_connected = True

    async def login(self, username: str, password: str) -> None:
        if FakeSMTP.login_error is not None:
            raise FakeSMTP.login_error
        self.logged_in = (username, password)

    async def send_message(self, message) -> None:
        if FakeSMTP.send_error is not None:
            raise FakeSMTP.send_error
        self.messages.append(message)

    async def quit(self) -> None:
        self.quit_called = True
        self.is_connected = False

    def close(self) -> None:
        self.is_connected = False


@pytest.fixture
def fake_smtp(monkeypatch: pytest.MonkeyPatch):
    FakeSMTP.instances = []
    FakeSMTP.connect_error = None
    FakeSMTP.login_error = None
    FakeSMTP.send_error = None
    monkeypatch.setattr(email_module.aiosmtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _smtp_transport() -> email_module.SMTPEmailTransport:
    return email_module.SMTPEmailTransport(
        hostname="smtp.example.com",
        port=587,
        sender="noreply@example.com",
        username="mailer",
        password="secret",
    )


async def test_smtp_send_builds_message_and_closes_connection(fake_smtp) -> None:
    await _smtp_transport().send_email("alice@example.com", "Subject", "<p>Hi</p>")

    smtp = fake_smtp.instances[0]
    assert smtp.logged_in == ("mailer", "secret")
    assert smtp.quit_called
    message = smtp.messages[0]
    assert message["To"] == "alice@example.com"
    assert message["From"] == "noreply@example.com"
    assert message["Subject"] == "Subject"
    assert message["X-Service"] == "Notification Service"


async def test_smtp_invalid_address_is_permanent(fake_smtp) -> None:
    with pytest.raises(PermanentError) as excinfo:
        await _smtp_transport().send_email("not-an-address", "Subject", "body")

    assert excinfo.value.reason == "invalid-address"
    assert fake_smtp.instances == []


async def test_smtp_unreachable_server_is_endpoint_unavailable(fake_smtp) -> None:
    fake_smtp.connect_error = aiosmtplib.SMTPConnectError("connection refused")

    with pytest.raises(EmailEndpointUnavailable):
        await _smtp_transport().send_email("alice@example.com", "Subject", "body")


async def test_smtp_auth_rejection_is_permanent(fake_smtp) -> None:
    fake_smtp.login_error = aiosmtplib.SMTPAuthenticationError(535, "bad credentials")

    with pytest.raises(PermanentError) as excinfo:
        await _smtp_transport().send_email("alice@example.com", "Subject", "body")

    assert excinfo.value.reason == "smtp-auth-rejected"


async def test_smtp_temporary_auth_failure_is_transient(fake_smtp) -> None:
    fake_smtp.login_error = aiosmtplib.SMTPAuthenticationError(454, "try later")

    with pytest.raises(EmailEndpointUnavailable):
        await _smtp_transport().send_email("alice@example.com", "Subject", "body")


@pytest.mark.parametrize(
    ("code", "expected", "reason"),
    [(451, TransientError, "smtp-451"), (550, PermanentError, "smtp-550")],
)
async def test_smtp_response_codes_are_classified(fake_smtp, code, expected, reason) -> None:
    fake_smtp.send_error = aiosmtplib.SMTPResponseException(code, "server said no")

    with pytest.raises(expected) as excinfo:
        await _smtp_transport().send_email("alice@example.com", "Subject", "body")

    assert excinfo.value.reason == reason
    assert fake_smtp.instances[0].quit_called


async def test_smtp_refused_recipient_is_permanent(fake_smtp) -> None:
    fake_smtp.send_error = aiosmtplib.SMTPRecipientsRefused(
        [aiosmtplib.SMTPRecipientRefused(550, "no such user", "alice@example.com")]
    )

    with pytest.raises(PermanentError) as excinfo:
        await _smtp_transport().send_email("alice@example.com", "Subject", "body")

    assert excinfo.value.reason == "recipient-refused"


async def test_smtp_deferred_recipient_is_transient(fake_smtp) -> None:
    fake_smtp.send_error = aiosmtplib.SMTPRecipientsRefused(
        [aiosmtplib.SMTPRecipientRefused(450, "mailbox busy", "alice@example.com")]
    )

    with pytest.raises(TransientError) as excinfo:
        await _smtp_transport().send_email("alice@example.com", "Subject", "body")

    assert excinfo.value.reason == "recipient-deferred"


async def test_smtp_disconnect_during_send_is_transient(fake_smtp) -> None:
    fake_smtp.send_error = aiosmtplib.SMTPServerDisconnected("gone")

    with pytest.raises(TransientError) as excinfo:
        await _smtp_transport().send_email("alice@example.com", "Subject", "body")

    assert excinfo.value.reason == "smtp-disconnected"


class _SendGridHTTPError(Exception):
    def __init__(self, status_code: int, body) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


def _sendgrid_client(send=None, scopes_status: int = 200):
    sent = []

    def default_send(message):
        sent.append(message)
        return types.SimpleNamespace(status_code=202, body=b"")

    client = types.SimpleNamespace(
        client=types.SimpleNamespace(
            scopes=types.SimpleNamespace(
                get=lambda: types.SimpleNamespace(status_code=scopes_status)
            )
        ),
        send=send or default_send,
    )
    return client, sent


async def test_sendgrid_send_success() -> None:
    client, sent = _sendgrid_client()
    transport = email_module.SendGridEmailTransport(
        api_key="key", sender="noreply@example.com", client=client
    )

    await transport.send_email("alice@example.com", "Subject", "<p>Hi</p>")

    assert len(sent) == 1


async def test_sendgrid_unreachable_api_is_endpoint_unavailable() -> None:
    client, sent = _sendgrid_client(scopes_status=503)
    transport = email_module.SendGridEmailTransport(
        api_key="key", sender="noreply@example.com", client=client
    )

    with pytest.raises(EmailEndpointUnavailable):
        await transport.send_email("alice@example.com", "Subject", "body")
    assert sent == []


@pytest.mark.parametrize(
    ("status_code", "expected"),
    [(429, TransientError), (502, TransientError), (400, PermanentError), (403, PermanentError)],
)
async def test_sendgrid_http_errors_are_classified(status_code, expected) -> None:
    body = json.dumps({"errors": [{"message": "rejected", "field": "to"}]})

    def failing_send(message):
        raise _SendGridHTTPError(status_code, body)

    client, _ = _sendgrid_client(send=failing_send)
    transport = email_module.SendGridEmailTransport(
        api_key="key", sender="noreply@example.com", client=client
    )

    with pytest.raises(expected) as excinfo:
        await transport.send_email("alice@example.com", "Subject", "body")

    assert excinfo.value.reason == f"sendgrid-{status_code}"
    assert "to: rejected" in str(excinfo.value)


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        (None, ""),
        (b"  ", ""),
        ("plain text", "plain text"),
        ({"errors": [{"message": "bad"}, {"message": "worse", "field": "from"}]}, "bad; from: worse"),
        (["a", "b"], "a; b"),
        ({"unexpected": True}, '{"unexpected": true}'),
    ],
)
def test_sendgrid_details_describe_error_payloads(body, expected) -> None:
    assert email_module._sendgrid_details(types.SimpleNamespace(body=body)) == expected


def test_sendgrid_failure_without_status_is_transient() -> None:
    error = email_module._sendgrid_failure(ConnectionError("reset"), fallback="reset")

    assert isinstance(error, TransientError)
    assert error.reason == "sendgrid-unreachable"
    assert str(error) == "reset"


def test_build_email_transport_disabled_with_half_set_credentials(caplog) -> None:
    settings = Settings(
        _env_file=None,
        smtp_host="smtp.example.com",
        smtp_username="mailer",
        email_from="noreply@example.com",
    )

    with caplog.at_level(logging.WARNING):
        transport = email_module.build_email_transport(settings)

    assert transport is None
    assert "SMTP_PASSWORD" in caplog.text


def test_build_email_transport_sendgrid_disabled_without_sender() -> None:
    settings = Settings(_env_file=None, email_backend="sendgrid", sendgrid_api_key="key")

    assert email_module.build_email_transport(settings) is None


def test_build_email_transport_disabled_without_smtp_settings(caplog) -> None:
    settings = Settings(_env_file=None, smtp_host="smtp.example.com")

    with caplog.at_level(logging.WARNING):
        transport = email_module.build_email_transport(settings)

    assert transport is None
    assert "SMTP_USERNAME" in caplog.text


def test_build_email_transport_smtp() -> None:
    settings = Settings(
        _env_file=None,
        smtp_host="smtp.example.com",
        smtp_username="mailer",
        smtp_password="secret",
        email_from="noreply@example.com",
    )

    transport = email_module.build_email_transport(settings)

    assert isinstance(transport, email_module.SMTPEmailTransport)


def test_build_email_transport_sendgrid_disabled_without_key() -> None:
    settings = Settings(_env_file=None, email_backend="sendgrid")

    assert email_module.build_email_transport(settings) is None


def test_render_notification_email_escapes_text() -> None:
    notification = Notification(
        id="n1",
        recipient_id="alice",
        message={"title": "<b>Due</b>"},
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )

    body = email_module.render_notification_email(notification)

    assert "&lt;b&gt;Due&lt;/b&gt;" in body
    assert "2024-05-01T00:00:00+00:00" in body
