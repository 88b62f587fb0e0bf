"""Shared fixtures for the notification service test-suite."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure the project root (which contains ``main`` and ``notification_service``) is importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# ``main`` builds an application at import time; keep it off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

from notification_service.application.use_cases import NotificationDispatcher
from notification_service.domain.errors import ConnectionClosed
from notification_service.infrastructure.database import (
    build_engine,
    build_session_factory,
    initialize_database,
)
from notification_service.infrastructure.notifications import (
    NotificationStore,
    StaticRecipientDirectory,
    SubscriptionRegistry,
)


class FakePushTransport:
    """Records pushes; handles listed in ``dead`` behave like closed sockets."""

    def __init__(self) -> None:
        self.sent: list[tuple[object, dict]] = []
        self.dead: set[object] = set()

    async def send_push(self, connection, payload) -> None:
        if connection in self.dead:
            raise ConnectionClosed(f"{connection} is closed")
        self.sent.append((connection, payload))

    def sent_to(self, connection) -> list[dict]:
        return [payload for target, payload in self.sent if target == connection]


class FakeEmailTransport:
    """Replays a scripted list of errors, then succeeds."""

    def __init__(self, errors=()) -> None:
        self.errors = list(errors)
        self.attempts: list[tuple[str, str, str]] = []

    async def send_email(self, address: str, subject: str, body: str) -> None:
        self.attempts.append((address, subject, body))
        if self.errors:
            raise self.errors.pop(0)

    @property
    def delivered_to(self) -> list[str]:
        return [address for address, _, _ in self.attempts]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'notifications.db'}")
    initialize_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> NotificationStore:
    return NotificationStore(build_session_factory(engine))


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def push_transport() -> FakePushTransport:
    return FakePushTransport()


@pytest.fixture
def email_transport() -> FakeEmailTransport:
    return FakeEmailTransport()


@pytest.fixture
def directory() -> StaticRecipientDirectory:
    return StaticRecipientDirectory({"alice": "alice@example.com", "bob": "bob@example.com"})


@pytest.fixture
def dispatcher(store, registry, push_transport, email_transport, directory) -> NotificationDispatcher:
    return NotificationDispatcher(
        store,
        registry,
        push_transport,
        email_transport=email_transport,
        directory=directory,
        email_max_attempts=3,
        email_backoff_seconds=0,
        email_backoff_max_seconds=0,
    )
