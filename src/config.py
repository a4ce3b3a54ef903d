"""Application settings loaded from environment variables."""

import os
import zoneinfo
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Deadline engine configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/deadlines.db"))

    # Turso (hosted libSQL): when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")
    scheduler_tick_seconds: int = Field(default=300, gt=0)
    reminder_claim_lease_seconds: int = Field(default=600, gt=0)

    # Reminders fire at this local hour on (due date - lead days)
    reminder_hour: int = Field(default=0, ge=0, le=23)
    default_notification_lead_days: int = Field(default=7, ge=0)

    # Urgency tiers (days until due, inclusive upper bounds)
    urgency_due_this_week_days: int = Field(default=3, ge=0)
    urgency_due_soon_days: int = Field(default=7, ge=0)

    # Notifications
    default_notification_channel: str = Field(default="email")
    transport_timeout_seconds: float = Field(default=30.0, gt=0)
    app_base_url: str = Field(default="")

    # Email (Resend)
    resend_api_key: str = Field(default="")
    email_from: str = Field(default="LabSync <noreply@labsync.app>")

    # Slack
    slack_bot_token: str = Field(default="")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @field_validator("scheduler_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            zoneinfo.ZoneInfo(value)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Unknown timezone: {value}"
            raise ValueError(msg) from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _lease_outlives_send(self) -> "Settings":
        if self.reminder_claim_lease_seconds <= self.transport_timeout_seconds:
            msg = (
                "reminder_claim_lease_seconds must exceed transport_timeout_seconds "
                "so a claim cannot expire while its send is still running"
            )
            raise ValueError(msg)
        return self

    def get_timezone(self) -> zoneinfo.ZoneInfo:
        """Return the scheduler timezone as a ZoneInfo."""
        return zoneinfo.ZoneInfo(self.scheduler_timezone)


settings = Settings()
