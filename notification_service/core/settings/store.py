"""Document store backend settings."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DocumentStoreSettings(BaseSettings):
    """Where jobs, reservations and audit records live.

    Environment variables use STORE_ prefix.
    Example: STORE_BACKEND=sql, STORE_DATABASE_URL=postgresql+asyncpg://...
    """

    backend: Literal["memory", "sql"] = Field(
        default="memory",
        description="memory keeps documents in-process; sql uses SQLAlchemy async",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./notification-service.db",
        description="SQLAlchemy async URL used when backend is sql",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")
    create_tables: bool = Field(
        default=True,
        description="Create the documents table on startup when missing",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
