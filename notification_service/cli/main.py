"""Main CLI entry point for notification-service management commands."""

import click

from notification_service.cli.commands import drill, jobs, metrics, scheduler, server, storage, tokens
from notification_service.infra.logging import setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="notification-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Notification Service CLI.

    \b
    Command Groups:
      jobs       Job queue: run due jobs, inspect jobs and dead letters
      storage    Reservation storage-policy sweep and audit trail
      metrics    Delivery metrics rollups
      tokens     Push device token maintenance
      scheduler  Periodic job management
    """
    ctx.ensure_object(dict)


cli.add_command(jobs.jobs)
cli.add_command(storage.storage)
cli.add_command(metrics.metrics)
cli.add_command(tokens.tokens)
cli.add_command(scheduler.scheduler)
cli.add_command(drill.drill)
cli.add_command(server.serve)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
