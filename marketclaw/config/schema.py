"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseModel):
    """Scheduling core configuration."""
    workspace: str = "~/.marketclaw/workspace"
    timezone: str | None = None  # IANA zone for cron evaluation; None = local time


class CalendarSyncConfig(BaseModel):
    """Global calendar sync settings."""
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    default_calendar_id: str | None = "primary"
    default_timezone: str | None = None  # None falls back to UTC
    backend: Literal["gog", "google", "none"] = "gog"
    gog_binary: str = "gog"
    command_timeout: float = Field(default=30.0, gt=0, description="Seconds per backend call")
    token_path: str = "~/.marketclaw/google_token.json"


class Config(BaseSettings):
    """Root configuration for marketclaw."""
    model_config = SettingsConfigDict(env_prefix="MARKETCLAW_", env_nested_delimiter="__")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    calendar: CalendarSyncConfig = Field(default_factory=CalendarSyncConfig)

    @property
    def workspace_path(self) -> Path:
        """Get expanded workspace path."""
        return Path(self.scheduler.workspace).expanduser()
