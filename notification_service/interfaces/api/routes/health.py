from fastapi import APIRouter, Request

from notification_service.interfaces.api.schemas import HealthRead

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthRead)
def health(request: Request) -> HealthRead:
    """Report whether the email channel is enabled and how many sockets are live."""

    state = request.app.state
    return HealthRead(
        status="healthy",
        email="configured" if state.dispatcher.email_enabled else "disabled",
        live_connections=state.registry.count(),
    )
