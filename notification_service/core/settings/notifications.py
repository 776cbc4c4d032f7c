"""Notification queue and storage-policy settings.

Provides settings for:
- Job retry and backoff
- Due-job batch sizing
- Delay follow-up chaining
- Reservation pickup reminders and storage escalation
- Device token hygiene and delivery metrics rollups
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationSettings(BaseSettings):
    """Configuration for the notification job queue.

    Environment variables use NOTIFY_ prefix.
    Example: NOTIFY_MAX_ATTEMPTS=5, NOTIFY_REMINDER_SCHEDULE_HOURS=[72,120,168]
    """

    # Retry configuration
    max_attempts: int = Field(default=5, ge=1, le=20)
    """Attempts before a job is failed and dead-lettered."""

    retry_base_seconds: float = Field(default=60.0, gt=0)
    """Base delay for exponential backoff between retries."""

    retry_ceiling_seconds: float = Field(default=3600.0, gt=0)
    """Maximum delay between retries before jitter."""

    retry_jitter_range: tuple[float, float] = (0.85, 1.0)
    """Multiplicative jitter applied to every backoff delay."""

    due_batch_size: int = Field(default=50, ge=1, le=1000)
    """Jobs pulled per due-job sweep."""

    dead_letter_message_max_chars: int = 1000

    # Delay follow-ups
    delay_follow_up_initial_hours: float = 12.0
    delay_follow_up_repeat_hours: float = 24.0
    delay_follow_up_max_ordinal: int = 14

    # Storage policy
    reminder_schedule_hours: list[float] = Field(default_factory=lambda: [72.0, 120.0, 168.0])
    """Elapsed hours after pickup-ready at which reminder ordinals 1..n fall due."""

    hold_pending_after_hours: float = 120.0
    stored_by_policy_after_hours: float = 192.0
    pickup_window_pre_expiry_hours: float = 24.0
    storage_sweep_limit: int = Field(default=200, ge=1, le=5000)
    storage_history_max_entries: int = Field(default=60, ge=1)
    storage_audit_max_entries: int = Field(default=60, ge=1)

    # Device tokens and rollups
    device_token_stale_days: int = 90
    device_token_cleanup_limit: int = 250
    delivery_metrics_window_hours: int = 24
    delivery_metrics_scan_limit: int = 5000

    @field_validator("reminder_schedule_hours")
    @classmethod
    def _ascending_schedule(cls, value: list[float]) -> list[float]:
        if not value:
            msg = "reminder_schedule_hours must contain at least one threshold"
            raise ValueError(msg)
        if sorted(value) != value:
            msg = "reminder_schedule_hours must be ascending"
            raise ValueError(msg)
        return value

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
