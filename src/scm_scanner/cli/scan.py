"""Scan commands for SCM Scanner."""

import json
from typing import Annotated, Any

import typer
from rich.table import Table

from scm_scanner.cli.common import (
    OutputFormatOption,
    TokenOption,
    ToolTypeOption,
    UsernameOption,
    console,
    parse_date,
    parse_tool_type,
    run_async_command,
)
from scm_scanner.db import dispose_engine
from scm_scanner.platforms import PlatformServiceLocator
from scm_scanner.scan import build_default_scanner
from scm_scanner.schemas import OutputFormat, ScanRequest, ToolType

app = typer.Typer(help="Scan repositories for commits and merge requests")


def _resolve_tool_type(tool_type: str | None, url: str) -> ToolType:
    if tool_type:
        return parse_tool_type(tool_type)
    detected = PlatformServiceLocator.detect_platform(url)
    if detected is None:
        console.print(f"[red]Error:[/red] Could not detect platform from URL: {url}. Pass --tool-type.")
        raise typer.Exit(1)
    return detected


@app.command("repo")
def scan_repository(
    url: Annotated[str, typer.Argument(help="Repository URL (HTTPS or SSH)")],
    tool_config_id: Annotated[
        str,
        typer.Option("--tool-config-id", "-c", help="Identifier correlating all records of the repository"),
    ],
    tool_type: ToolTypeOption = None,
    token: TokenOption = None,
    username: UsernameOption = None,
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Repository display name"),
    ] = None,
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Branch to scan (default branch if omitted)"),
    ] = None,
    since: Annotated[
        str | None,
        typer.Option("--since", help="Window start (YYYY-MM-DD or ISO format)"),
    ] = None,
    until: Annotated[
        str | None,
        typer.Option("--until", help="Window end, exclusive (YYYY-MM-DD or ISO format)"),
    ] = None,
    last_scan_from: Annotated[
        int | None,
        typer.Option("--last-scan-from", help="Epoch millis of the previous scan (overrides --since)"),
    ] = None,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Scan one repository and persist its commits and merge requests.

    Examples:
        scmscan scan repo https://github.com/owner/repo -c repo-1 --token ghp_xxx
        scmscan scan repo https://gitlab.example.com/group/sub/repo -c repo-2 --since 2024-10-01
        scmscan scan repo https://bitbucket.org/ws/repo -c repo-3 -u alice --token app_pw -f json
        scmscan -v scan repo git@github.com:owner/repo.git -c repo-1  # Debug logging
    """
    request = ScanRequest(
        repository_url=url,
        repository_name=name,
        tool_type=_resolve_tool_type(tool_type, url),
        tool_config_id=tool_config_id,
        username=username,
        token=token,
        branch_name=branch,
        last_scan_from=last_scan_from,
        since=parse_date(since),
        until=parse_date(until),
    )

    async def _scan() -> dict[str, Any]:
        try:
            async with build_default_scanner() as scanner:
                result = await scanner.scan_repository(request)
                return result.to_dict()
        finally:
            await dispose_engine()

    result = run_async_command(_scan(), error_prefix="Scan failed")

    if output_format == OutputFormat.JSON:
        console.print_json(json.dumps(result))
        return

    table = Table(title=f"Scan of {request.display_name}")
    table.add_column("Commits", justify="right")
    table.add_column("Merge Requests", justify="right")
    table.add_column("Users", justify="right")
    table.add_column("Duration", justify="right")
    table.add_row(
        str(result["commits_found"]),
        str(result["merge_requests_found"]),
        str(result["users_found"]),
        f"{result['duration_ms'] / 1000:.1f}s",
    )
    console.print(table)
    console.print("[green]Scan completed.[/green]")


@app.command("repos")
def scan_connection_repositories(
    url: Annotated[str, typer.Argument(help="Any repository or organization URL of the connection")],
    connection_id: Annotated[
        str,
        typer.Option("--connection-id", help="Connection whose repositories are listed"),
    ],
    tool_type: ToolTypeOption = None,
    token: TokenOption = None,
    username: UsernameOption = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-l", min=1, help="Maximum number of repositories"),
    ] = None,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Discover and store the repositories visible to a connection.

    Only repositories updated since the last successful sync of the
    connection are listed.

    Examples:
        scmscan scan repos https://github.com/owner --connection-id conn-1 --token ghp_xxx
        scmscan scan repos https://dev.azure.com/org --connection-id conn-2 --tool-type azurerepository
    """
    request = ScanRequest(
        repository_url=url,
        tool_type=_resolve_tool_type(tool_type, url),
        tool_config_id=connection_id,
        connection_id=connection_id,
        username=username,
        token=token,
        limit=limit,
    )

    async def _list() -> dict[str, Any]:
        try:
            async with build_default_scanner() as scanner:
                result = await scanner.scan_connection_repositories(request)
                return result.to_dict()
        finally:
            await dispose_engine()

    result = run_async_command(_list(), error_prefix="Repository scan failed")

    if output_format == OutputFormat.JSON:
        console.print_json(json.dumps(result))
        return

    if not result["success"]:
        console.print(f"[yellow]No repositories found for connection {connection_id}.[/yellow]")
        return

    console.print(f"[bold]Found {result['repositories_found']} repositories:[/bold]")
    for repository_name in result["repositories"]:
        console.print(f"  - {repository_name}")
