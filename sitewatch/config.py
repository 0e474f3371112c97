"""SiteWatch Configuration."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for SiteWatch, read from SITEWATCH_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="SITEWATCH_")

    # Storage
    data_path: Path | None = Path("~/.sitewatch/sites.json")
    result_retention_days: int = 30

    # Engine
    max_concurrent_checks: int = 16
    script_timeout_seconds: float = 5.0
    max_redirects: int = 5
    user_agent: str | None = None  # Defaults to SiteWatch/<version>
    reconcile_interval_seconds: int = 300  # Daemon re-reads the store this often

    # Notifications
    notify_channels: list[str] = ["cli"]
    slack_webhook_url: str | None = None
    discord_webhook_url: str | None = None
    webhook_url: str | None = None


@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings."""
    return Settings()
