"""Database configuration and session management."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from notification_service.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def build_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for ``database_url``.

    SQLite connections are shared between the event loop and the worker
    threads that run store operations, so the same-thread check is disabled.
    """

    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def engine_from_settings(settings: Settings) -> Engine:
    logger.info("Connecting to database %s", engine_url_for_logs(settings.database_url))
    return build_engine(settings.database_url)


def engine_url_for_logs(database_url: str) -> str:
    """Return ``database_url`` with any password masked."""

    scheme, sep, rest = database_url.partition("://")
    if not sep or "@" not in rest:
        return database_url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def initialize_database(engine: Engine) -> None:
    """Ensure all ORM models have corresponding database tables."""

    from notification_service.infrastructure import models  # noqa: F401  # ensure models are imported

    Base.metadata.create_all(bind=engine, checkfirst=True)


__all__ = [
    "Base",
    "build_engine",
    "build_session_factory",
    "engine_from_settings",
    "engine_url_for_logs",
    "initialize_database",
]
