"""Common CLI option factories and helpers.

This module centralizes reusable CLI options and provides
`run_async_command`, the unified async execution with error handling
used by every command.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from datetime import UTC, datetime
from typing import Annotated, TypeVar

import typer
from dateutil import parser as date_parser
from rich.console import Console

from scm_scanner.schemas import OutputFormat, ToolType

# Shared console instance for CLI output
console = Console()

T = TypeVar("T")


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Execute async code from a synchronous CLI command with unified error handling.

    Uses asyncio.run() for clean event loop management. Catches exceptions,
    prints user-friendly error messages, and exits with code 1.

    Args:
        coro: Async coroutine to execute
        error_prefix: Prefix for error messages (default: "Error")

    Returns:
        Result from the coroutine

    Raises:
        typer.Exit: Re-raised from deliberate exits, or raised with code 1 on error
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        raise
    except Exception as e:
        cause = f" ({e.__cause__})" if e.__cause__ else ""
        console.print(f"[red]{error_prefix}:[/red] {e}{cause}")
        raise typer.Exit(1) from None


def parse_date(date_str: str | None) -> datetime | None:
    """Parse a CLI date (YYYY-MM-DD or ISO 8601) as an aware UTC datetime.

    Raises:
        typer.BadParameter: If the date string is invalid
    """
    if date_str is None:
        return None
    try:
        value = date_parser.isoparse(date_str)
    except ValueError:
        raise typer.BadParameter(
            f"Invalid date format: {date_str}. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS format."
        ) from None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def parse_tool_type(value: str) -> ToolType:
    """Resolve a tool type option (case-insensitive)."""
    tool_type = ToolType.parse(value)
    if tool_type is None:
        choices = ", ".join(t.value for t in ToolType)
        raise typer.BadParameter(f"Unknown tool type: {value}. Use one of: {choices}")
    return tool_type


# Typer requires function calls as default arguments, which triggers B008.
# Using Annotated with a centralized type alias keeps the noqa in one place.

OutputFormatOption = Annotated[
    OutputFormat,
    typer.Option(
        "--format",
        "-f",
        help="Output format",
    ),
]
"""Output format option type for CLI commands.

Usage:
    def command(output_format: OutputFormatOption = OutputFormat.TEXT):
"""

TokenOption = Annotated[
    str | None,
    typer.Option(
        "--token",
        "-t",
        envvar="SCM_TOKEN",
        help="Access token or app password (env: SCM_TOKEN)",
    ),
]

UsernameOption = Annotated[
    str | None,
    typer.Option(
        "--username",
        "-u",
        help="Account name (Bitbucket app passwords)",
    ),
]

ToolTypeOption = Annotated[
    str | None,
    typer.Option(
        "--tool-type",
        help="Platform: github, gitlab, bitbucket, azurerepository (detected from the URL if omitted)",
    ),
]
