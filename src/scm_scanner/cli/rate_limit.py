"""Rate limit inspection command."""

import json
from typing import Annotated, Any

import typer
from rich.table import Table

from scm_scanner.cli.common import (
    OutputFormatOption,
    TokenOption,
    console,
    parse_tool_type,
    run_async_command,
)
from scm_scanner.config import get_settings
from scm_scanner.exceptions import ScannerError
from scm_scanner.rate_limit import RateLimitService, RateLimitStatus, default_monitors, now_millis
from scm_scanner.schemas import OutputFormat


def _format_time_remaining(seconds: int) -> str:
    """Format seconds as human-readable time."""
    if seconds <= 0:
        return "Now"
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"{hours}h {minutes}m"


def _usage_style(usage_pct: float, threshold_pct: float) -> str:
    if usage_pct >= threshold_pct:
        return f"[red]{usage_pct:.1f}%[/red]"
    if usage_pct >= threshold_pct * 0.6:
        return f"[yellow]{usage_pct:.1f}%[/yellow]"
    return f"[green]{usage_pct:.1f}%[/green]"


def show_rate_limit(
    platform: Annotated[
        str,
        typer.Argument(help="Platform: github, gitlab, bitbucket, azurerepository"),
    ],
    token: TokenOption = None,
    base_url: Annotated[
        str | None,
        typer.Option("--base-url", help="API base URL of a self-hosted instance"),
    ] = None,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Show the current rate limit status of a platform.

    Examples:
        scmscan rate-limit github --token ghp_xxx
        scmscan rate-limit gitlab --token glpat-xxx --base-url https://gitlab.example.com
        scmscan rate-limit bitbucket --token user:app_password --format json
    """
    tool_type = parse_tool_type(platform)
    if not token:
        console.print("[red]Error:[/red] --token (or SCM_TOKEN) is required")
        raise typer.Exit(1)

    async def _check() -> tuple[RateLimitStatus, float]:
        service = RateLimitService(default_monitors(), get_settings().rate_limit)
        monitor = service.get_monitor(tool_type)
        status = await service.get_status(tool_type, token, base_url)
        if monitor is None or status is None:
            raise ScannerError(f"No rate limit monitor for {tool_type.platform_name}")
        return status, service.resolve_threshold(monitor)

    status, threshold = run_async_command(_check(), error_prefix="Rate limit check failed")
    seconds_left = max(0, status.millis_until_reset(now_millis()) // 1000)

    if output_format == OutputFormat.JSON:
        result: dict[str, Any] = {
            **status.model_dump(),
            "threshold": threshold,
            "exceeds_threshold": status.exceeds_threshold(threshold),
            "reset_at": status.reset_at.isoformat(),
        }
        console.print_json(json.dumps(result))
        return

    table = Table(title=f"{status.platform} Rate Limit")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Used %", justify="right")
    table.add_column("Resets In", justify="right")
    table.add_row(
        str(status.used),
        str(status.remaining),
        str(status.limit),
        _usage_style(status.usage_percentage * 100, threshold * 100),
        _format_time_remaining(seconds_left),
    )
    console.print(table)

    if status.exceeds_threshold(threshold):
        console.print(
            f"\n[yellow]Threshold ({threshold:.0%}) reached.[/yellow] "
            f"Scans will wait {_format_time_remaining(seconds_left)} before calling the API."
        )
