"""Operator authorization settings."""

from __future__ import annotations

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AdminSettings(BaseSettings):
    """Shared secret required by the run-now and drill endpoints.

    Environment variables use ADMIN_ prefix.
    Example: ADMIN_TOKEN=change-me
    """

    token: SecretStr | None = None
    header_name: str = "x-admin-token"

    model_config = SettingsConfigDict(
        env_prefix="ADMIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
