"""Application lifespan management.

Startup order: logging, services (document store, HTTP client, pipeline),
then the scheduler. Shutdown runs in reverse.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from notification_service.container import build_services
from notification_service.core.settings import get_app_settings
from notification_service.infra.logging import get_logger, setup_logging
from notification_service.tasks import (
    build_scheduler,
    setup_scheduled_jobs,
    start_scheduler,
    stop_scheduler,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_app_settings()
    setup_logging()
    logger.info(
        "Starting notification service",
        extra={"service": settings.service_name, "environment": settings.environment},
    )

    services = getattr(app.state, "services", None)
    owns_services = services is None
    if owns_services:
        services = await build_services()
        app.state.services = services

    scheduler = None
    if settings.enable_scheduler:
        scheduler = build_scheduler()
        setup_scheduled_jobs(scheduler, services)
        await start_scheduler(scheduler)
        app.state.scheduler = scheduler

    try:
        yield
    finally:
        if scheduler is not None:
            await stop_scheduler(scheduler)
        if owns_services:
            await services.aclose()
            app.state.services = None
        logger.info("Notification service stopped")
