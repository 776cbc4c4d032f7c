"""Delivery metrics commands."""

from __future__ import annotations

import click

from notification_service.cli.utils import coro, print_summary, services_context


@click.group(name="metrics")
def metrics() -> None:
    """Delivery metrics commands."""


@metrics.command(name="aggregate")
@click.option("--window-hours", type=int, default=24, show_default=True)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
)
@coro
async def aggregate(window_hours: int, output_format: str) -> None:
    """Aggregate delivery attempts into notification_metrics."""
    async with services_context() as services:
        summary = await services.delivery_metrics.aggregate(window_hours, triggered_by="cli")
    print_summary(summary.model_dump(mode="json"), output_format)
