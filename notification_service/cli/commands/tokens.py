"""Push device token maintenance commands."""

from __future__ import annotations

import click

from notification_service.cli.utils import coro, services_context, success


@click.group(name="tokens")
def tokens() -> None:
    """Push device token maintenance."""


@tokens.command(name="cleanup")
@click.option("--older-than-days", type=int, default=None)
@click.option("--limit", type=int, default=None)
@coro
async def cleanup(older_than_days: int | None, limit: int | None) -> None:
    """Deactivate device tokens that were not refreshed recently."""
    async with services_context() as services:
        settings = services.settings
        summary = await services.device_tokens.cleanup_stale(
            older_than_days or settings.device_token_stale_days,
            limit or settings.device_token_cleanup_limit,
        )
    success(f"Deactivated {summary.deactivated} of {summary.scanned} stale token(s)")
