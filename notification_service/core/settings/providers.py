"""Outbound provider settings (SMS and push relay)."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

SmsProviderMode = Literal["disabled", "mock", "twilio"]
SmsMockMode = Literal["success", "auth", "provider_4xx", "provider_5xx", "network"]


class SmsSettings(BaseSettings):
    """SMS provider configuration.

    Environment variables use SMS_ prefix.
    Example: SMS_PROVIDER=twilio, SMS_TWILIO_ACCOUNT_SID=AC...
    """

    provider: SmsProviderMode = "disabled"
    mock_mode: SmsMockMode = "success"
    twilio_account_sid: str | None = None
    twilio_auth_token: SecretStr | None = None
    twilio_from_number: str | None = None
    twilio_base_url: str = "https://api.twilio.com"
    timeout_seconds: float = Field(default=10.0, gt=0)
    min_interval_ms: int = Field(default=250, ge=0)
    """Minimum spacing between provider calls."""

    message_max_chars: int = 1200

    model_config = SettingsConfigDict(
        env_prefix="SMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )


class PushSettings(BaseSettings):
    """Push relay configuration.

    Environment variables use PUSH_ prefix.
    Example: PUSH_RELAY_URL=https://relay.internal/send
    """

    relay_url: str | None = None
    relay_key: SecretStr | None = None
    timeout_seconds: float = Field(default=10.0, gt=0)
    min_interval_ms: int = Field(default=250, ge=0)
    max_tokens_per_send: int = Field(default=20, ge=1, le=500)

    model_config = SettingsConfigDict(
        env_prefix="PUSH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
