"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. All keys use
the ``CAMPUS_`` prefix (e.g. ``CAMPUS_STORE_CAPACITY=2000``).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the campus location-intelligence service.

    Environment variables are loaded from a ``.env`` file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="CAMPUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    admin_api_key: str = ""
    default_actor_role: str = "admin"

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    # ── Event store ────────────────────────────────────────────────────
    store_capacity: int = Field(default=1000, ge=1)
    recency_window_minutes: int = Field(default=30, ge=1)
    history_default_hours: int = Field(default=24, ge=1)
    data_retention_days: int = Field(default=730, ge=1)  # 2 years

    # ── Ingestion ──────────────────────────────────────────────────────
    ingestion_interval_seconds: float = Field(default=3.0, gt=0)
    enable_auto_ingestion: bool = True

    # ── Query engine ───────────────────────────────────────────────────
    unusual_movement_multiplier: float = Field(default=3.0, gt=0)
    business_hours_start: int = Field(default=6, ge=0, le=23)
    business_hours_end: int = Field(default=18, ge=1, le=24)
    campus_timezone: str = "UTC"

    # ── Intent resolver ────────────────────────────────────────────────
    resolver_latency_seconds: float = Field(default=1.5, ge=0)
    library_building: str = "Library"

    # ── Directory ──────────────────────────────────────────────────────
    directory_file: str | None = None

    # ── Audit ──────────────────────────────────────────────────────────
    audit_soft_limit: int = Field(default=100_000, ge=1)

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
