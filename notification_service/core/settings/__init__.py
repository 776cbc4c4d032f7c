"""Modular Pydantic Settings v2 configuration.

Each domain owns a frozen BaseSettings model with its own environment prefix:
APP_, LOG_, STORE_, NOTIFY_, SMS_, PUSH_, SCHEDULER_, ADMIN_.

Import settings via cached loaders:
    from notification_service.core.settings import get_sms_settings
"""

from __future__ import annotations

from .admin import AdminSettings
from .app import AppSettings
from .loader import (
    clear_settings_cache,
    get_admin_settings,
    get_app_settings,
    get_logging_settings,
    get_notification_settings,
    get_push_settings,
    get_scheduler_settings,
    get_sms_settings,
    get_store_settings,
)
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .providers import PushSettings, SmsSettings
from .scheduler import SchedulerSettings
from .store import DocumentStoreSettings

__all__ = [
    "AdminSettings",
    "AppSettings",
    "DocumentStoreSettings",
    "LoggingSettings",
    "NotificationSettings",
    "PushSettings",
    "SchedulerSettings",
    "SmsSettings",
    "clear_settings_cache",
    "get_admin_settings",
    "get_app_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_push_settings",
    "get_scheduler_settings",
    "get_sms_settings",
    "get_store_settings",
]
