import logging
from contextlib import asynccontextmanager

import anyio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notification_service.application.use_cases import NotificationDispatcher
from notification_service.config import Settings, get_settings
from notification_service.infrastructure.database import (
    build_session_factory,
    engine_from_settings,
    initialize_database,
)
from notification_service.infrastructure.email import build_email_transport
from notification_service.infrastructure.notifications import (
    NotificationStore,
    StaticRecipientDirectory,
    SubscriptionRegistry,
    WebSocketPushTransport,
)
from notification_service.interfaces.api.routes import register_routes

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Follow transport disconnects while running and drain deliveries on shutdown."""

    state = app.state
    async with anyio.create_task_group() as group:
        group.start_soon(state.registry.follow, state.push_transport.disconnections())
        yield
        await state.dispatcher.drain()
        await state.push_transport.aclose()
    state.engine.dispose()


def wire_services(app: FastAPI, settings: Settings) -> None:
    """Build the store, registry, transports and dispatcher for ``app``."""

    engine = engine_from_settings(settings)
    initialize_database(engine)

    store = NotificationStore(build_session_factory(engine))
    registry = SubscriptionRegistry()
    push_transport = WebSocketPushTransport()
    dispatcher = NotificationDispatcher(
        store,
        registry,
        push_transport,
        email_transport=build_email_transport(settings),
        directory=StaticRecipientDirectory(settings.recipient_emails),
        email_subject=settings.email_subject,
        email_max_attempts=settings.email_max_attempts,
        email_backoff_seconds=settings.email_backoff_seconds,
        email_backoff_max_seconds=settings.email_backoff_max_seconds,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.registry = registry
    app.state.push_transport = push_transport
    app.state.dispatcher = dispatcher


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Task Notification Service", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    wire_services(app, settings)
    register_routes(app)
    return app


app = create_app()
