"""Scheduler commands."""

from __future__ import annotations

import asyncio
import json

import click

from notification_service.cli.utils import coro, header, info, services_context
from notification_service.tasks import (
    build_scheduler,
    get_job_status,
    setup_scheduled_jobs,
    start_scheduler,
    stop_scheduler,
)


@click.group(name="scheduler")
def scheduler() -> None:
    """Scheduled job management commands."""


@scheduler.command(name="list")
@coro
async def list_jobs() -> None:
    """List the periodic jobs that the service registers."""
    header("Scheduled Jobs")
    async with services_context() as services:
        apscheduler = build_scheduler()
        setup_scheduled_jobs(apscheduler, services)
        click.echo(json.dumps(get_job_status(apscheduler), indent=2))


@scheduler.command(name="run")
@coro
async def run() -> None:
    """Run the scheduler in the foreground without the HTTP API."""
    async with services_context() as services:
        apscheduler = build_scheduler()
        setup_scheduled_jobs(apscheduler, services)
        await start_scheduler(apscheduler)
        info("Scheduler running, press Ctrl+C to stop")
        try:
            await asyncio.Event().wait()
        finally:
            await stop_scheduler(apscheduler)
