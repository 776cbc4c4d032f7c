"""CLI utilities for running async operations and formatting output."""

from notification_service.cli.utils.async_runner import coro, services_context
from notification_service.cli.utils.formatters import (
    error,
    header,
    info,
    print_summary,
    success,
    warning,
)

__all__ = [
    "coro",
    "error",
    "header",
    "info",
    "print_summary",
    "services_context",
    "success",
    "warning",
]
