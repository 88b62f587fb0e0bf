"""FastAPI dependency utilities."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from notification_service.application.use_cases import NotificationDispatcher
from notification_service.config import Settings
from notification_service.infrastructure.security import recipient_from_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


def get_settings_dependency(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """Return the dispatcher wired into the running application."""

    return request.app.state.dispatcher


def resolve_recipient(token: str, settings: Settings) -> str:
    """Resolve the authenticated recipient for the provided token."""

    try:
        return recipient_from_token(token, settings.secret_key)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_current_recipient(
    token: str = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings_dependency),
) -> str:
    """Return the recipient id of the authenticated caller."""

    return resolve_recipient(token, settings)
