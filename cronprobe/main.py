"""Command line entry point: ``cronprobe``."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from cronprobe import __app_name__, __version__
from cronprobe.cli import config, db, jobs, run
from cronprobe.cli.exit_codes import ExitCode

app = typer.Typer(
    name=__app_name__,
    help="Scheduled HTTP health checks with an execution log.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.add_typer(run.app, name="run")
app.add_typer(jobs.app, name="jobs")
app.add_typer(db.app, name="db")
app.add_typer(config.app, name="config")

DEBUG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def _show_version(value: bool) -> None:
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _console_level(verbose: bool, debug: bool, quiet: bool) -> int:
    """Log level for stderr; short commands stay quiet unless asked."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    if quiet:
        return logging.ERROR
    return logging.WARNING


def _setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Configure the root logger for a CLI invocation.

    The line format comes from the ``[logging]`` config section. A log
    file, from ``--log-file`` or the config, always receives DEBUG.

    Args:
        verbose: INFO on stderr
        debug: DEBUG on stderr, with source locations
        quiet: Only errors on stderr
        log_file: Overrides ``logging.file`` from the config
    """
    from cronprobe.config import get_config

    logging_config = get_config().logging
    level = _console_level(verbose, debug, quiet)
    fmt = DEBUG_FORMAT if debug else logging_config.format
    log_file = log_file or logging_config.file

    handlers: list[logging.Handler] = []

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    handlers.append(stderr_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format=fmt,
        handlers=handlers,
        force=True,
    )
    logging.getLogger(__name__).debug(
        f"Logging configured: stderr={logging.getLevelName(level)}, file={log_file}"
    )


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        callback=_show_version,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Log INFO messages to stderr.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log DEBUG messages with source locations.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only log errors.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also log everything (DEBUG) to this file.",
    ),
) -> None:
    """Scheduled HTTP health checks with an execution log.

    [bold]Commands:[/bold]

    • [cyan]jobs[/cyan] - add, enable, disable and inspect health-check jobs
    • [cyan]run[/cyan] - start the cron worker that probes enabled jobs
    • [cyan]db[/cyan] - create the database and prune old records
    • [cyan]config[/cyan] - show and validate configuration

    [bold]Examples:[/bold]

        cronprobe jobs add --name api --url https://example.com/health --schedule "*/5 * * * *"
        cronprobe run --daemon
        cronprobe jobs logs 1
    """
    if quiet and (verbose or debug):
        console.print("[red]Error:[/red] --quiet cannot be combined with --verbose or --debug")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    _setup_logging(verbose=verbose, debug=debug, quiet=quiet, log_file=log_file)


if __name__ == "__main__":
    app()
