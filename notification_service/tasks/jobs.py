"""Periodic job bodies.

Each function takes the shared ``ServiceContainer`` and returns a plain
summary dict so the result can be logged or printed by the CLI.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from notification_service.infra.logging import clear_log_context, get_logger, set_log_context

if TYPE_CHECKING:
    from notification_service.container import ServiceContainer

logger = get_logger(__name__)


async def process_due_notification_jobs(services: ServiceContainer) -> dict[str, Any]:
    """Scheduled: every 15 minutes."""
    set_log_context(task="process_due_notification_jobs")
    try:
        summary = await services.queue.process_due_jobs()
        return summary.model_dump()
    finally:
        clear_log_context()


async def evaluate_reservation_storage_holds(services: ServiceContainer) -> dict[str, Any]:
    """Scheduled: every 60 minutes."""
    set_log_context(task="evaluate_reservation_storage_holds")
    try:
        summary = await services.storage.sweep()
        return summary.model_dump()
    finally:
        clear_log_context()


async def aggregate_notification_delivery_metrics(services: ServiceContainer) -> dict[str, Any]:
    """Scheduled: every 30 minutes."""
    set_log_context(task="aggregate_notification_delivery_metrics")
    try:
        summary = await services.delivery_metrics.aggregate(
            services.settings.delivery_metrics_window_hours
        )
        return summary.model_dump(mode="json")
    finally:
        clear_log_context()


async def cleanup_stale_device_tokens(services: ServiceContainer) -> dict[str, Any]:
    """Scheduled: daily at 03:30."""
    set_log_context(task="cleanup_stale_device_tokens")
    try:
        summary = await services.device_tokens.cleanup_stale(
            services.settings.device_token_stale_days,
            services.settings.device_token_cleanup_limit,
        )
        return summary.model_dump()
    finally:
        clear_log_context()
