"""Centralized settings for the notification pipeline.

Uses pydantic-settings to load from environment variables (prefixed
SCHOOLNOTIFY_) with defaults matching the component configs.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Notification pipeline settings loaded from environment variables."""

    # --- Persistence ---
    use_database: bool = False
    database_url: str = "sqlite:///schoolnotify.db"

    # --- Queue retry policy ---
    max_attempts: int = 3
    retry_delays_minutes: list[int] = [1, 5, 15]
    processing_timeout_minutes: int = 15

    # --- Scheduling ---
    queue_tick_seconds: float = 60.0
    digest_tick_seconds: float = 300.0
    digest_window_minutes: int = 10

    # --- Analytics ---
    history_max: int = 1000
    analytics_days: int = 30

    # --- Content ---
    school_name: str = "MA Malnu Kananga"

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = {
        "env_prefix": "SCHOOLNOTIFY_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
