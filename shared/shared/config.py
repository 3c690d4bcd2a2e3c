"""Configuration management using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (used when store_backend == "database")
    database_url: str = "sqlite+aiosqlite:///./reminders.db"

    # Redis (notification fan-out between scheduler and bots)
    redis_url: str = "redis://redis:6379"
    notification_channel: str = "notifications:discord"

    # Durable store: "database" | "jsonbin"
    store_backend: str = "database"
    jsonbin_bin_id: str = ""
    jsonbin_api_key: str = ""
    jsonbin_base_url: str = "https://api.jsonbin.io/v3"

    # Platform tokens
    discord_token: str = ""

    # Service wiring
    scheduler_url: str = "http://scheduler:8000"
    service_auth_token: str = ""

    # Scheduling
    # How often interval / specific-time reminders re-check the fire gate
    poll_interval_seconds: float = 10.0
    # Forward scan bound when looking for the next eligible day
    schedule_horizon_days: int = 365

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def model_post_init(self, __context: object) -> None:
        """Normalise the store backend name."""
        self.store_backend = self.store_backend.strip().lower()


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
