"""Server command."""

from __future__ import annotations

import click
import uvicorn

from notification_service.cli.utils import info
from notification_service.core.settings import get_app_settings


@click.command(name="serve")
@click.option("--host", default=None, help="Host to bind (default: from settings)")
@click.option("--port", default=None, type=int, help="Port to bind (default: from settings)")
@click.option("--reload/--no-reload", default=False, help="Enable auto-reload on code changes")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the admin API with the in-process scheduler."""
    settings = get_app_settings()
    host = host or settings.host
    port = port or settings.port
    info(f"Starting notification service on {host}:{port}")
    uvicorn.run(
        "notification_service.app.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )
