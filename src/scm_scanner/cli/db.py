"""Database management commands."""

import typer

from scm_scanner.cli.common import console, run_async_command
from scm_scanner.config import get_settings
from scm_scanner.db import create_tables, dispose_engine

app = typer.Typer(help="Database commands")


@app.command("init")
def init_db() -> None:
    """Create all tables in the configured database.

    Production databases should be migrated with alembic instead.

    Examples:
        scmscan db init
    """

    async def _init() -> None:
        try:
            await create_tables()
        finally:
            await dispose_engine()

    run_async_command(_init(), error_prefix="Database init failed")
    console.print(f"[green]Database initialized:[/green] {get_settings().database_url}")
