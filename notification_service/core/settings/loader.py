"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from notification_service.core.settings import get_notification_settings

    settings = get_notification_settings()

Testing:
    Clear the cache to force reload:
    clear_settings_cache()

    Or build an instance directly:
    settings = NotificationSettings(max_attempts=3)
"""

from __future__ import annotations

from functools import lru_cache

from .admin import AdminSettings
from .app import AppSettings
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .providers import PushSettings, SmsSettings
from .scheduler import SchedulerSettings
from .store import DocumentStoreSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings.

    Returns:
        Validated and frozen AppSettings instance.
    """
    return AppSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_store_settings() -> DocumentStoreSettings:
    """Get cached document store settings."""
    return DocumentStoreSettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Get cached notification queue settings."""
    return NotificationSettings()


@lru_cache(maxsize=1)
def get_sms_settings() -> SmsSettings:
    """Get cached SMS provider settings."""
    return SmsSettings()


@lru_cache(maxsize=1)
def get_push_settings() -> PushSettings:
    """Get cached push relay settings."""
    return PushSettings()


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    """Get cached scheduler settings."""
    return SchedulerSettings()


@lru_cache(maxsize=1)
def get_admin_settings() -> AdminSettings:
    """Get cached admin settings."""
    return AdminSettings()


def clear_settings_cache() -> None:
    """Clear every cached settings instance.

    Useful in tests that patch environment variables between cases.
    """
    get_app_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_store_settings.cache_clear()
    get_notification_settings.cache_clear()
    get_sms_settings.cache_clear()
    get_push_settings.cache_clear()
    get_scheduler_settings.cache_clear()
    get_admin_settings.cache_clear()
