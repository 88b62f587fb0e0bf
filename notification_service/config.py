"""Application configuration settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"


class Settings(BaseSettings):
    """Application configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE, env_file_encoding=ENV_FILE_ENCODING, extra="ignore"
    )

    database_url: str = Field(
        default="sqlite:///./notifications.db",
        description="Database connection URL used by SQLAlchemy",
        min_length=1,
    )
    secret_key: str = Field(
        default="change-me",
        description="Secret key used to verify bearer tokens",
        min_length=1,
    )
    log_level: str = Field(default="INFO", description="Root logging level")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed to call the API from a browser",
    )

    email_backend: str = Field(
        default="smtp",
        description="Email transport to use: 'smtp' or 'sendgrid'",
        pattern="^(smtp|sendgrid)$",
    )
    smtp_host: str | None = Field(default=None, description="SMTP submission host")
    smtp_port: int = Field(default=587, description="SMTP submission port", gt=0)
    smtp_username: str | None = Field(default=None, description="SMTP login user")
    smtp_password: str | None = Field(default=None, description="SMTP login password")
    smtp_use_tls: bool = Field(default=False, description="Use implicit TLS (port 465)")
    smtp_start_tls: bool = Field(default=True, description="Upgrade with STARTTLS")
    smtp_timeout_seconds: float = Field(default=30.0, gt=0)
    email_from: str | None = Field(
        default=None,
        description="Address that appears as the sender of notification emails",
    )
    sendgrid_api_key: str | None = Field(
        default=None,
        description="SendGrid API key used when EMAIL_BACKEND=sendgrid",
    )
    sendgrid_sender: str | None = Field(
        default=None,
        description="Sender address used with the SendGrid backend",
        min_length=3,
    )
    email_subject: str = Field(default="New Notification")
    email_max_attempts: int = Field(
        default=3,
        description="Maximum number of email attempts for transient failures",
        ge=1,
    )
    email_backoff_seconds: float = Field(
        default=1.0,
        description="Initial delay between email attempts; doubled on each retry",
        ge=0,
    )
    email_backoff_max_seconds: float = Field(default=10.0, ge=0)
    recipient_emails: dict[str, str] = Field(
        default_factory=dict,
        description="Static mapping from recipient id to email address",
    )

    @model_validator(mode="after")
    def _validate_email_addresses(self) -> "Settings":
        if self.email_from and "@" not in self.email_from:
            raise ValueError("EMAIL_FROM must be a valid email address")
        if self.sendgrid_sender and "@" not in self.sendgrid_sender:
            raise ValueError("SENDGRID_SENDER must be a valid email address")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
