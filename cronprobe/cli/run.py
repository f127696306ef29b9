"""cronprobe run command - Start the scheduling worker."""

import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from cronprobe.config import LoggingConfig

app = typer.Typer(help="Start the cron worker that probes every enabled job.")
console = Console()

PID_FILE_NAME = "cronprobe.pid"


def _setup_logging(logging_config: "LoggingConfig", verbose: bool, log_file: Optional[Path] = None) -> None:
    """Configure logging for the long-running worker.

    The worker logs every schedule change and probe result, so it runs at
    the configured level (INFO by default) rather than the CLI default.

    Args:
        logging_config: The ``[logging]`` config section
        verbose: Force DEBUG
        log_file: Where to also write the log
    """
    level = logging.DEBUG if verbose else getattr(logging, logging_config.level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=logging_config.format,
        handlers=handlers,
        force=True,
    )
    # APScheduler logs every trigger run at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    daemon: bool = typer.Option(
        False,
        "--daemon",
        "-d",
        help="Run in background as daemon.",
    ),
    single_flight: bool = typer.Option(
        False,
        "--single-flight",
        help="Skip a fire while the job's previous execution is still running.",
    ),
    refresh_on_change: bool = typer.Option(
        False,
        "--refresh-on-change",
        help="Recreate timers whose job schedule or URL was edited.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
) -> None:
    """Start the cron worker.

    The worker schedules every enabled job, re-reads the job list every
    reconcile interval, and appends one log entry per fire.

    Example:
        cronprobe run
        cronprobe run --daemon
        cronprobe run --single-flight --verbose
    """
    if ctx.invoked_subcommand is not None:
        return

    from cronprobe.config import ensure_directories, load_config, set_config
    from cronprobe.daemon.pid import PIDFile
    from cronprobe.daemon.service import daemonize, run_worker

    config = load_config(config_file)
    if single_flight:
        config.worker.single_flight = True
    if refresh_on_change:
        config.worker.refresh_on_change = True
    ensure_directories(config)
    set_config(config)

    pid_file = PIDFile(config.data_dir / PID_FILE_NAME)

    running_pid = pid_file.running_pid()
    if running_pid is not None:
        console.print("[red]Error: Worker is already running[/red]")
        console.print(f"[yellow]PID: {running_pid}[/yellow]")
        raise typer.Exit(code=1)

    pid_file.clear_if_stale()

    console.print("[bold green]Starting cron worker...[/bold green]")

    if verbose:
        console.print(f"Config: {config_file or 'default'}")
        console.print(f"Database: {config.database_url}")
        console.print(f"Reconcile interval: {config.worker.reconcile_interval}s")
        console.print(f"Single flight: {config.worker.single_flight}")
        console.print(f"Daemon mode: {daemon}")

    log_file = config.logging.file or (config.data_dir / "worker.log" if daemon else None)
    _setup_logging(config.logging, verbose, log_file)

    if daemon:
        if sys.platform == "win32":
            console.print("[yellow]Warning: Daemon mode not supported on Windows, running in foreground[/yellow]")
        else:
            console.print("[dim]Forking to background...[/dim]")
            daemonize(log_file)

    try:
        with pid_file:
            asyncio.run(run_worker(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except OSError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    except Exception as e:
        logging.exception("Worker error")
        console.print(f"[red]Worker error: {e}[/red]")
        raise typer.Exit(code=1)


def _print_worker_status(status_file: Path) -> None:
    """Print the timers a running worker last published."""
    try:
        status = json.loads(status_file.read_text())
    except FileNotFoundError:
        console.print("[dim]  No status published yet[/dim]")
        return
    except (OSError, ValueError) as e:
        console.print(f"[yellow]  Could not read worker status: {e}[/yellow]")
        return

    console.print(f"  Timers: {status.get('timers', 0)}, in flight: {status.get('in_flight', 0)}")
    console.print(f"  Updated: {status.get('updated_at', '-')}")

    jobs = status.get("jobs") or []
    if not jobs:
        return

    table = Table(title="Scheduled jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Schedule", style="green")
    table.add_column("Next run (UTC)")
    for job in jobs:
        table.add_row(str(job["job_id"]), job["name"], job["schedule"], job.get("next_run") or "-")
    console.print(table)


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Check worker status.

    Example:
        cronprobe run status
    """
    from cronprobe.config import load_config
    from cronprobe.daemon.pid import PIDFile
    from cronprobe.daemon.service import STATUS_FILE_NAME

    config = load_config(config_file)
    pid_file = PIDFile(config.data_dir / PID_FILE_NAME)

    pid = pid_file.running_pid()
    if pid is not None:
        console.print(f"[green]● Worker is running[/green] (PID: {pid})")
        console.print(f"  Data directory: {config.data_dir}")
        console.print(f"  Database: {config.database_url}")
        _print_worker_status(config.data_dir / STATUS_FILE_NAME)
    else:
        console.print("[yellow]○ Worker is not running[/yellow]")
        if pid_file.clear_if_stale():
            console.print("[dim]  (removed stale PID file)[/dim]")


@app.command()
def stop(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Force kill the worker (SIGKILL).",
    ),
) -> None:
    """Stop the worker.

    Sends SIGTERM so in-flight probes can finish and be recorded.
    Use --force to send SIGKILL for immediate termination.

    Example:
        cronprobe run stop
        cronprobe run stop --force
    """
    from cronprobe.config import load_config
    from cronprobe.daemon.pid import PIDFile

    config = load_config(config_file)
    pid_file = PIDFile(config.data_dir / PID_FILE_NAME)

    pid = pid_file.read()
    if pid is None:
        console.print("[yellow]Worker is not running (no PID file found)[/yellow]")
        raise typer.Exit()

    if not pid_file.is_running():
        console.print("[yellow]Worker is not running (stale PID file)[/yellow]")
        pid_file.remove()
        raise typer.Exit()

    sig = getattr(signal, "SIGKILL", signal.SIGTERM) if force else signal.SIGTERM

    try:
        os.kill(pid, sig)
        if force:
            console.print(f"[red]Force killed worker (PID: {pid})[/red]")
            pid_file.remove()
        else:
            console.print(f"[green]Shutdown signal sent to worker (PID: {pid})[/green]")
            console.print("[dim]Worker will drain in-flight probes and exit...[/dim]")
    except ProcessLookupError:
        console.print("[yellow]Worker process not found (already stopped)[/yellow]")
        pid_file.remove()
    except PermissionError:
        console.print(f"[red]Permission denied: cannot signal process {pid}[/red]")
        raise typer.Exit(code=1)
    except OSError as e:
        console.print(f"[red]Error signaling worker: {e}[/red]")
        raise typer.Exit(code=1)
