from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./loyalty.db"
    sqlite_busy_timeout_ms: int = Field(5000, ge=0)

    # Loyalty program rules
    loyalty_program_slug: str = "default"
    loyalty_retention_days: int = Field(45, ge=0)
    loyalty_cleanup_grace_days: int = Field(1, ge=0)
    loyalty_max_discount_percent: float = Field(20.0, ge=0, le=100)
    loyalty_earning_percent: float = Field(4.0, ge=0, le=100)
    loyalty_pending_discount_expiry_seconds: int = Field(90, gt=0)
    loyalty_program_config_ttl_seconds: int = Field(60, ge=0)

    # Scheduler
    loyalty_job_scheduler_enabled: bool = False
    loyalty_job_schedule_path: str = "config/schedules.toml"
    loyalty_cleanup_dry_run: bool | None = None

    # Telegram notifications
    loyalty_notifications_enabled: bool = False
    telegram_bot_token: str | None = None
    telegram_api_base_url: str = "https://api.telegram.org"
    telegram_timeout_seconds: float = 10.0
    loyalty_points_name: str = "points"

    @field_validator("loyalty_program_slug", mode="before")
    @classmethod
    def _normalize_slug(cls, value: object) -> str:
        if value is None:
            return "default"
        cleaned = str(value).strip().lower()
        return cleaned or "default"

    @property
    def cleanup_dry_run(self) -> bool:
        """Purge runs as a dry run unless explicitly enabled outside development."""

        if self.loyalty_cleanup_dry_run is not None:
            return self.loyalty_cleanup_dry_run
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
