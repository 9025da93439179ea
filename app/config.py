from functools import lru_cache
from typing import List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DATE_PATTERN = "%B %d, at %H:%M"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="Appointment Scheduling Service")
    cors_origins: List[AnyHttpUrl] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )
    use_mock_data: bool = Field(
        default=True
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0"
    )
    mail_service_base_url: AnyHttpUrl | None = Field(
        default=None
    )
    mail_service_token: str | None = Field(
        default=None
    )
    mail_service_timeout: float = Field(
        default=10.0
    )
    mail_from: str = Field(
        default="Scheduling Team <noreply@scheduling.local>"
    )
    mail_max_tries: int = Field(
        default=3, ge=1
    )
    mail_retry_backoff: float = Field(
        default=5.0, ge=0
    )
    mail_poll_interval: float = Field(
        default=0.5, gt=0
    )
    page_size: int = Field(
        default=20, ge=1
    )
    cancellation_lead_hours: int = Field(
        default=2, ge=0
    )
    date_pattern: str = Field(
        default=DEFAULT_DATE_PATTERN
    )

    model_config = SettingsConfigDict(env_prefix="SCHEDULING_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
