"""cronprobe db command - Database maintenance."""

import typer
from rich.console import Console

from cronprobe.cli.error_handler import handle_errors

app = typer.Typer(help="Create the database and prune old execution records.")
console = Console()


@app.command("init")
@handle_errors
def init_db() -> None:
    """Create the job and execution log tables if they do not exist.

    Example:
        cronprobe db init
    """
    from cronprobe.config import ensure_directories, get_config
    from cronprobe.database.store import SQLJobStore

    config = get_config()
    ensure_directories(config)
    SQLJobStore(config).initialize()
    console.print(f"[green]✓[/green] Database ready: {config.database_url}")


@app.command("prune")
@handle_errors
def prune(
    days: int = typer.Option(30, "--days", "-d", help="Delete records older than this many days.", min=1),
) -> None:
    """Delete execution records older than ``--days`` days.

    Example:
        cronprobe db prune --days 7
    """
    from cronprobe.config import get_config
    from cronprobe.database.store import SQLJobStore

    store = SQLJobStore(get_config())
    store.initialize()
    deleted = store.prune_logs(days)
    console.print(f"[green]✓[/green] Deleted {deleted} execution records older than {days} days")
