"""Output formatting utilities for CLI commands."""

import json
from typing import Any

import click


def success(message: str) -> None:
    """Print a success message in green."""
    click.secho(f"✓ {message}", fg="green")


def error(message: str) -> None:
    """Print an error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def warning(message: str) -> None:
    """Print a warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def info(message: str) -> None:
    """Print an info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def header(message: str) -> None:
    """Print a header message in cyan bold."""
    click.secho(f"\n{message}", fg="cyan", bold=True)


def print_summary(data: dict[str, Any], output_format: str = "table") -> None:
    """Print a flat summary as aligned ``key: value`` lines or JSON."""
    if output_format == "json":
        click.echo(json.dumps(data, indent=2, default=str))
        return
    width = max((len(key) for key in data), default=0) + 2
    for key, value in data.items():
        if isinstance(value, dict):
            click.echo(f"{key}:")
            for sub_key, sub_value in sorted(value.items()):
                click.echo(f"  {sub_key:<{width}} {sub_value}")
        else:
            click.echo(f"{key + ':':<{width}} {value}")
