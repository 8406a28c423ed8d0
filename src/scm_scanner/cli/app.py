"""Main CLI application for SCM Scanner."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from scm_scanner import __version__
from scm_scanner.cli import db as db_cmd
from scm_scanner.cli import rate_limit as rate_limit_cmd
from scm_scanner.cli import scan as scan_cmd
from scm_scanner.config import get_settings
from scm_scanner.logging import setup_logging

app = typer.Typer(
    name="scmscan",
    help="Incremental commit and merge request scanner for GitHub, GitLab, Bitbucket and Azure DevOps.",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"scmscan version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """SCM Scanner - scan repositories into a KPI store."""
    settings = get_settings()
    log_config = settings.logging

    # Setup logging with CLI overrides
    setup_logging(
        level=settings.log_level,
        verbose=verbose,
        quiet=quiet,
        log_file=Path(log_config.log_file) if log_config.log_file else None,
        rotation=log_config.rotation,
        retention=log_config.retention,
        serialize=log_config.serialize,
    )


# Register subcommands
app.command("rate-limit")(rate_limit_cmd.show_rate_limit)
app.add_typer(scan_cmd.app, name="scan")
app.add_typer(db_cmd.app, name="db")


if __name__ == "__main__":
    app()
