"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from negotiation_engine.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Negotiation Engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://negotiation:negotiation_dev"
        "@localhost:5432/negotiation_engine"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Escrow ---
    default_currency: str = "EUR"
    escrow_amount_tolerance: Decimal = Field(default=Decimal("0"), ge=0)

    # --- Scheduler ---
    scheduler_enabled: bool = True
    scheduler_poll_interval_seconds: float = Field(default=30.0, gt=0)
    scheduler_stale_lock_seconds: int = Field(default=3600, gt=0)

    # --- Premium metrics ---
    premium_metrics_job_interval_seconds: int = Field(default=3600, gt=0)
    premium_metrics_window_days: int = Field(default=30, ge=7, le=120)
    forecast_bucket_days: int = Field(default=7, ge=1)

    # --- Negotiation response deadlines ---
    negotiation_sla_warning_hours: int = Field(default=24, gt=0)
    negotiation_sla_job_interval_seconds: int = Field(default=900, gt=0)

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
