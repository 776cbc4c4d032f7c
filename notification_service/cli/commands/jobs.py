"""Notification job queue commands."""

from __future__ import annotations

import click

from notification_service.cli.utils import (
    coro,
    error,
    header,
    info,
    print_summary,
    services_context,
    success,
)

_FORMAT = click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)


@click.group(name="jobs")
def jobs() -> None:
    """Notification job queue commands."""


@jobs.command(name="run-due")
@click.option("--limit", type=int, default=None, help="Maximum jobs to process")
@_FORMAT
@coro
async def run_due(limit: int | None, output_format: str) -> None:
    """Process queued jobs whose run_after has passed."""
    header("Processing due notification jobs")
    async with services_context() as services:
        summary = await services.queue.process_due_jobs(limit)
    print_summary(summary.model_dump(exclude={"job_ids"}), output_format)
    if summary.errors:
        error(f"{summary.errors} job(s) raised during processing")
    else:
        success(f"Processed {summary.processed} of {summary.picked} job(s)")


@jobs.command(name="show")
@click.argument("job_id")
@coro
async def show(job_id: str) -> None:
    """Show one job document."""
    async with services_context() as services:
        job = await services.queue.get_job(job_id)
    if job is None:
        error(f"Job {job_id} not found")
        raise SystemExit(1)
    print_summary(job.model_dump(mode="json"), "json")


@jobs.command(name="dead-letters")
@click.option("--limit", type=int, default=20, show_default=True)
@coro
async def dead_letters(limit: int) -> None:
    """List dead-lettered jobs, newest first."""
    async with services_context() as services:
        records = await services.queue.list_dead_letters(limit)
    if not records:
        info("No dead letters")
        return
    for record in records:
        click.echo(
            f"{record.failed_at.isoformat()}  {record.type.value:<30} "
            f"{record.error_class:<13} {record.job_id[:16]}  {record.error_message[:60]}"
        )
