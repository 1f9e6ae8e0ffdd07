from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "JobClock"
    environment: str = "development"
    host: str = os.getenv("JC_HOST", "127.0.0.1")
    port: int = int(os.getenv("JC_PORT", "8080"))

    sqlite_path: Path = Path(os.getenv("JC_SQLITE_PATH", "./data/jobclock.db"))
    persist_changes: bool = os.getenv("JC_PERSIST_CHANGES", "true").lower() == "true"

    timezone: str = os.getenv("TZ", "Europe/Sofia")
    log_level: str = os.getenv("JC_LOG_LEVEL", "INFO")

    workday_start_hour: int = Field(default=int(os.getenv("JC_WORKDAY_START_HOUR", "8")), ge=0, le=23)
    slot_buffer_minutes: int = Field(default=int(os.getenv("JC_SLOT_BUFFER_MINUTES", "30")), ge=0)
    jitter_window_minutes: int = Field(default=int(os.getenv("JC_JITTER_WINDOW_MINUTES", "30")), ge=0)
    tick_interval_seconds: float = Field(default=float(os.getenv("JC_TICK_INTERVAL_SECONDS", "60")), gt=0)

    adhoc_prefix: str = os.getenv("JC_ADHOC_PREFIX", "UNSCH")
    enforce_single_active: bool = os.getenv("JC_ENFORCE_SINGLE_ACTIVE", "true").lower() == "true"

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


settings = Settings()
