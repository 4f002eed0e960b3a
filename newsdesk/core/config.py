"""
Centralised configuration via Pydantic Settings.

Reads from .env in dev and from platform environment variables in production.
Every cost ceiling, interval and threshold of the automation control plane lives here.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignore platform-injected vars we don't need
    )

    # ── Application ─────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Database ────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./dev.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgres:// but SQLAlchemy needs postgresql+asyncpg://."""
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url

    # ── State store (Redis) ─────────────────────────────────
    redis_url: str = "redis://localhost:6379/0"
    # auto: try Redis and fall back to in-process storage
    state_backend: Literal["auto", "redis", "memory"] = "auto"
    redis_connect_timeout_seconds: float = 2.0

    # ── LLM: Gemini ────────────────────────────────────────
    google_api_key: str = ""
    model_analyst: str = "gemini-2.5-flash"
    model_writer: str = "gemini-2.5-pro"
    # USD per million tokens: (input, output)
    model_pricing: dict[str, tuple[float, float]] = {
        "gemini-2.5-flash": (0.30, 2.50),
        "gemini-2.5-pro": (1.25, 10.00),
    }
    default_model_pricing: tuple[float, float] = (1.25, 10.00)

    # ── Security ────────────────────────────────────────────
    api_key: str = "change-me"
    automation_cron_secret: str = "change-me"  # noqa: S105
    cron_rate_limit: str = "30/minute"

    # ── Cost guardrails ─────────────────────────────────────
    ai_per_item_limit_usd: float = Field(default=0.50, description="Lifetime spend cap per signal ($)")
    ai_daily_limit_usd: float = Field(default=10.0, description="Calendar-day spend cap ($)")
    ai_monthly_limit_usd: float = Field(default=100.0, description="Calendar-month spend cap ($)")
    cost_check_fail_open: bool = Field(
        default=True,
        description="Allow paid calls when the spend ledger cannot be queried",
    )

    # ── Circuit breaker ─────────────────────────────────────
    circuit_failure_threshold: int = 5
    circuit_reset_minutes: float = 5.0

    # ── Sources ─────────────────────────────────────────────
    source_failure_threshold: int = 5
    fetch_timeout_seconds: float = 20.0
    fetch_user_agent: str = "Newsdesk/1.0 (+automation)"

    # ── Scheduler defaults ──────────────────────────────────
    ingest_interval_minutes: int = 15
    signal_process_interval_minutes: int = 10
    synthesize_interval_minutes: int = 30
    publish_interval_minutes: int = 5

    ingest_timeout_seconds: float = 120.0
    signal_process_timeout_seconds: float = 180.0
    synthesize_timeout_seconds: float = 300.0
    publish_timeout_seconds: float = 60.0

    execution_history_size: int = 100
    metrics_buffer_size: int = 1000
    activity_log_size: int = 1000

    signals_per_cycle: int = 5
    signal_max_analysis_attempts: int = 3
    articles_per_cycle: int = 3
    publish_per_cycle: int = 20

    # ── Publishing ──────────────────────────────────────────
    publish_webhook_url: str = ""
    publish_webhook_secret: str = ""
    webhook_timeout_seconds: float = 10.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
