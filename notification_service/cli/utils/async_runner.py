"""Utilities for running async operations in CLI commands."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, TypeVar

T = TypeVar("T")


def coro(f: Callable[..., Awaitable[T]]) -> Callable[..., T]:
    """
    Decorator that makes an async function synchronous for Click.

    Usage:
        @cli.command()
        @coro
        async def my_command():
            result = await some_async_function()
            click.echo(result)
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


@asynccontextmanager
async def services_context() -> AsyncIterator[Any]:
    """Build the service container for one command and close it afterwards."""
    from notification_service.container import build_services

    services = await build_services()
    try:
        yield services
    finally:
        await services.aclose()
