"""Periodic job cadence settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Intervals for the in-process APScheduler.

    Environment variables use SCHEDULER_ prefix.
    """

    timezone: str = "UTC"
    misfire_grace_seconds: int = 60
    due_jobs_interval_minutes: int = 15
    storage_sweep_interval_minutes: int = 60
    delivery_metrics_interval_minutes: int = 30
    token_cleanup_hour: int = 3
    token_cleanup_minute: int = 30

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
