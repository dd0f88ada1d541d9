"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support (ADR: developer UX)
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - Lock/backoff knobs exposed: contention behaviour is tuned per deployment, not per call
"""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://waitlist:waitlist@db:5432/waitlist"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # sql: PostgreSQL row claims; memory: single-process deployments
    store_backend: Literal["sql", "memory"] = "sql"

    # Window policy
    response_window_hours: int = 24
    default_timezone: str = "America/New_York"

    # Promotion lock — bounded wait, then TransientContentionError
    promotion_lock_timeout_ms: int = 250
    promotion_lock_max_retries: int = 3
    promotion_lock_base_delay_ms: int = 50
    promotion_lock_max_delay_ms: int = 1000

    # Expiry sweeper
    sweeper_enabled: bool = True
    sweeper_interval_seconds: float = 30.0
    sweeper_cycle_timeout_seconds: float = 20.0

    # Notifications — empty webhook URL falls back to the logging sink
    notification_webhook_url: str = ""
    notification_api_key: str = ""
    notification_from_email: str = "noreply@readingroom.dev"
    notification_timeout_seconds: float = 10.0

    # API
    cors_origins: list[str] = ["http://localhost:3000"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
