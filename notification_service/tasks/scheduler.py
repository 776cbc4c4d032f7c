"""APScheduler integration for the periodic notification jobs.

The scheduler runs in the same process as the admin API (or the
``scheduler run`` CLI command) and calls the job bodies in
``notification_service.tasks.jobs`` directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from notification_service.core.settings import SchedulerSettings, get_scheduler_settings
from notification_service.infra.logging import get_logger

from .jobs import (
    aggregate_notification_delivery_metrics,
    cleanup_stale_device_tokens,
    evaluate_reservation_storage_holds,
    process_due_notification_jobs,
)

if TYPE_CHECKING:
    from notification_service.container import ServiceContainer

logger = get_logger(__name__)


def build_scheduler(settings: SchedulerSettings | None = None) -> AsyncIOScheduler:
    settings = settings or get_scheduler_settings()
    return AsyncIOScheduler(
        timezone=settings.timezone,
        job_defaults={
            "coalesce": True,  # Combine multiple pending executions into one
            "max_instances": 1,  # Only one instance of each job at a time
            "misfire_grace_time": settings.misfire_grace_seconds,
        },
    )


def setup_scheduled_jobs(
    scheduler: AsyncIOScheduler,
    services: ServiceContainer,
    settings: SchedulerSettings | None = None,
) -> None:
    """Register the periodic jobs against ``services``."""
    settings = settings or get_scheduler_settings()

    scheduler.add_job(
        func=process_due_notification_jobs,
        trigger=IntervalTrigger(minutes=settings.due_jobs_interval_minutes),
        args=[services],
        id="process_due_notification_jobs",
        name="Process due notification jobs",
        replace_existing=True,
    )

    scheduler.add_job(
        func=evaluate_reservation_storage_holds,
        trigger=IntervalTrigger(minutes=settings.storage_sweep_interval_minutes),
        args=[services],
        id="evaluate_reservation_storage_holds",
        name="Evaluate reservation storage holds",
        replace_existing=True,
    )

    scheduler.add_job(
        func=aggregate_notification_delivery_metrics,
        trigger=IntervalTrigger(minutes=settings.delivery_metrics_interval_minutes),
        args=[services],
        id="aggregate_notification_delivery_metrics",
        name="Aggregate notification delivery metrics",
        replace_existing=True,
    )

    scheduler.add_job(
        func=cleanup_stale_device_tokens,
        trigger=CronTrigger(hour=settings.token_cleanup_hour, minute=settings.token_cleanup_minute),
        args=[services],
        id="cleanup_stale_device_tokens",
        name="Cleanup stale device tokens",
        replace_existing=True,
    )

    logger.info("Scheduled jobs registered", extra={"job_count": len(scheduler.get_jobs())})


async def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Start the scheduler. Call after ``setup_scheduled_jobs``."""
    if scheduler.running:
        logger.warning("APScheduler is already running")
        return
    scheduler.start()
    logger.info("APScheduler started", extra={"job_count": len(scheduler.get_jobs())})


async def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("APScheduler stopped")
    else:
        logger.debug("APScheduler is not running")


def get_job_status(scheduler: AsyncIOScheduler) -> list[dict[str, Any]]:
    """Get status of all scheduled jobs."""
    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            }
        )
    return jobs
