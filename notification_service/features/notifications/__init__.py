"""Notification jobs, channels and delivery bookkeeping."""

from .device_tokens import DeviceTokenRegistry
from .errors import ErrorClass, ProviderError, classify_error, is_retryable
from .models import (
    ChannelFlags,
    DeadLetter,
    JobStatus,
    JobType,
    NotificationJob,
    NotificationPayload,
    SkipReason,
)
from .preferences import NotificationPreferences, PreferenceReader
from .queue import JobQueue
from .scheduling import resolve_run_after

__all__ = [
    "ChannelFlags",
    "DeadLetter",
    "DeviceTokenRegistry",
    "ErrorClass",
    "JobQueue",
    "JobStatus",
    "JobType",
    "NotificationJob",
    "NotificationPayload",
    "NotificationPreferences",
    "PreferenceReader",
    "ProviderError",
    "SkipReason",
    "classify_error",
    "is_retryable",
    "resolve_run_after",
]
