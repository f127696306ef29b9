"""Exception hierarchy and CLI error handling for cronprobe.

Engine code raises these exceptions; CLI commands wrapped with
``handle_errors`` turn them into a readable message and the matching
exit code.
"""

from functools import wraps
from typing import Callable, TypeVar, Any
import logging

import typer
from rich.console import Console

from cronprobe.cli.exit_codes import ExitCode

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class CronprobeError(Exception):
    """Base exception for cronprobe.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(CronprobeError):
    """Raised for unreadable config files or invalid settings."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class StorageError(CronprobeError):
    """Raised when the job store cannot be read or written.

    Examples:
        - Database file not reachable
        - Failed to list enabled jobs
        - Failed to append an execution record
    """

    exit_code = ExitCode.STORAGE_ERROR


class NetworkError(CronprobeError):
    """Network/connectivity error outside of probe outcomes."""

    exit_code = ExitCode.NETWORK_ERROR


class ValidationError(CronprobeError):
    """Validation error for user input."""

    exit_code = ExitCode.INVALID_ARGUMENT


class InvalidScheduleError(ValidationError):
    """A job's schedule is not a valid 5-field cron expression."""

    def __init__(self, schedule: str, reason: str = "", job_id: int | None = None) -> None:
        details: dict[str, Any] = {"schedule": schedule}
        if job_id is not None:
            details["job_id"] = job_id
        if reason:
            details["reason"] = reason
        super().__init__(f"Invalid cron schedule: '{schedule}'", details=details)
        self.schedule = schedule
        self.job_id = job_id


class NotFoundError(CronprobeError):
    """Requested job or record does not exist."""

    exit_code = ExitCode.NOT_FOUND


def _report(error: CronprobeError) -> None:
    """Print ``error`` and its details to stderr."""
    logger.error(
        f"{ExitCode.get_name(error.exit_code)}: {error.message}",
        extra={"exit_code": error.exit_code, "details": error.details},
    )
    console.print(f"[red]Error:[/red] {error.message}")
    for key, value in error.details.items():
        console.print(f"  [dim]{key}:[/dim] {value}")


def handle_errors(func: F) -> F:
    """Turn exceptions raised by a CLI command into an exit code.

    ``CronprobeError`` exits with the error's own code, Ctrl+C with
    ``CANCELLED`` and anything else with ``GENERAL_ERROR``. ``typer.Exit``
    and ``typer.Abort`` pass through untouched.

    Example:
        @app.command("enable")
        @handle_errors
        def enable_job(job_id: int):
            raise NotFoundError(f"Job not found: {job_id}")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (typer.Exit, typer.Abort):
            raise
        except CronprobeError as e:
            _report(e)
            raise typer.Exit(code=e.exit_code)
        except KeyboardInterrupt:
            logger.info("Command interrupted")
            console.print("\n[yellow]Cancelled.[/yellow]")
            raise typer.Exit(code=ExitCode.CANCELLED)
        except Exception as e:
            logger.exception(f"Unhandled error in {func.__name__}")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Re-run with --debug for the full traceback[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
