"""Reservation storage-policy commands."""

from __future__ import annotations

import click

from notification_service.cli.utils import (
    coro,
    header,
    info,
    print_summary,
    services_context,
    success,
)


@click.group(name="storage")
def storage() -> None:
    """Reservation storage-policy commands."""


@storage.command(name="sweep")
@click.option("--limit", type=int, default=None, help="Maximum reservations to evaluate")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
)
@coro
async def sweep(limit: int | None, output_format: str) -> None:
    """Run the storage-policy sweep once."""
    header("Evaluating reservation storage holds")
    async with services_context() as services:
        summary = await services.storage.sweep(limit=limit)
    print_summary(summary.model_dump(), output_format)
    success(f"Updated {summary.updated} reservation(s)")


@storage.command(name="audit")
@click.argument("reservation_id")
@coro
async def audit(reservation_id: str) -> None:
    """Show the storage audit trail of a reservation."""
    async with services_context() as services:
        entries = await services.audit.list_for(reservation_id)
    if not entries:
        info(f"No audit entries for {reservation_id}")
        return
    for entry in entries:
        at = entry.at.isoformat() if entry.at else "-"
        transition = (
            f"{entry.from_status or '-'} -> {entry.to_status or '-'}"
            if entry.from_status or entry.to_status
            else ""
        )
        click.echo(f"{at}  {entry.action:<26} {transition:<36} {entry.reason}")
