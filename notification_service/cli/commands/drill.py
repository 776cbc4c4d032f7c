"""Failure drill command."""

from __future__ import annotations

import click

from notification_service.cli.utils import coro, info, services_context, success
from notification_service.features.notifications.drill import DrillChannels, DrillRequest
from notification_service.features.notifications.models import DrillMode


@click.command(name="drill")
@click.argument("uid")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in DrillMode]),
    required=True,
    help="Simulated provider outcome",
)
@click.option(
    "--channel",
    "channels",
    type=click.Choice(["in_app", "email", "push", "sms"]),
    multiple=True,
    help="Channels to exercise (default: push)",
)
@click.option("--defer", is_flag=True, help="Schedule two minutes out instead of now")
@coro
async def drill(uid: str, mode: str, channels: tuple[str, ...], defer: bool) -> None:
    """Enqueue a synthetic job that simulates a provider failure."""
    selected = (
        DrillChannels(**{name: name in channels for name in DrillChannels.model_fields})
        if channels
        else DrillChannels()
    )
    async with services_context() as services:
        result = await services.drills.run(
            DrillRequest(uid=uid, mode=DrillMode(mode), channels=selected, force_run_now=not defer)
        )
        job = await services.queue.get_job(result.job_id)
    success(f"Drill job {result.job_id} enqueued ({result.mode.value})")
    if job is not None:
        info(f"Status: {job.status.value}, last error: {job.last_error or '-'}")
