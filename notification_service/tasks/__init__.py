"""Periodic jobs and their APScheduler wiring."""

from .jobs import (
    aggregate_notification_delivery_metrics,
    cleanup_stale_device_tokens,
    evaluate_reservation_storage_holds,
    process_due_notification_jobs,
)
from .scheduler import (
    build_scheduler,
    get_job_status,
    setup_scheduled_jobs,
    start_scheduler,
    stop_scheduler,
)

__all__ = [
    "aggregate_notification_delivery_metrics",
    "build_scheduler",
    "cleanup_stale_device_tokens",
    "evaluate_reservation_storage_holds",
    "get_job_status",
    "process_due_notification_jobs",
    "setup_scheduled_jobs",
    "start_scheduler",
    "stop_scheduler",
]
