"""cronprobe jobs command - Manage health-check jobs."""

import json
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cronprobe.cli.error_handler import NetworkError, ValidationError, handle_errors

app = typer.Typer(help="Manage health-check jobs and view their execution log.")
console = Console()


def _get_store():
    from cronprobe.config import get_config
    from cronprobe.database.store import SQLJobStore

    store = SQLJobStore(get_config())
    store.initialize()
    return store


def _status_markup(status: Optional[int]) -> str:
    if status is None:
        return "[dim]-[/dim]"
    if status == 0:
        return "[red]failed[/red]"
    if status < 400:
        return f"[green]{status}[/green]"
    return f"[yellow]{status}[/yellow]"


@app.command("add")
@handle_errors
def add_job(
    name: str = typer.Option(..., "--name", "-n", help="Job name."),
    url: str = typer.Option(..., "--url", "-u", help="URL to probe with GET."),
    schedule: str = typer.Option(
        ...,
        "--schedule",
        "-s",
        help="Cron schedule in UTC (e.g., '*/5 * * * *' for every 5 minutes).",
    ),
    user_id: int = typer.Option(1, "--user-id", help="Owner of the job."),
    disabled: bool = typer.Option(False, "--disabled", help="Create the job disabled."),
) -> None:
    """Register a new health-check job.

    Example:
        cronprobe jobs add --name api --url https://example.com/health --schedule "*/5 * * * *"
    """
    from cronprobe.config import validate_url
    from cronprobe.scheduler.timer_set import parse_schedule

    if not name.strip():
        raise ValidationError("Job name cannot be empty")
    if not validate_url(url):
        raise ValidationError(f"Invalid URL: {url}", details={"expected": "http(s)://host/path"})
    parse_schedule(schedule)

    job = _get_store().create_job(
        user_id=user_id, name=name, url=url, schedule=schedule, enabled=not disabled
    )

    console.print(f"[green]✓[/green] Job created: {job.id}")
    console.print(f"  URL: {job.url}")
    console.print(f"  Schedule: {job.schedule} (UTC)")
    console.print(f"  Enabled: {job.enabled}")


@app.command("list")
@handle_errors
def list_jobs(
    user_id: Optional[int] = typer.Option(None, "--user-id", help="Only jobs of this owner."),
    status: str = typer.Option(
        "all",
        "--status",
        "-s",
        help="Filter by status (enabled, disabled, all).",
    ),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List jobs with their execution count and last status.

    Example:
        cronprobe jobs list
        cronprobe jobs list --status enabled
    """
    if status not in ("enabled", "disabled", "all"):
        raise ValidationError(f"Invalid status filter: {status}")

    jobs = _get_store().list_jobs(user_id)
    if status == "enabled":
        jobs = [j for j in jobs if j["enabled"]]
    elif status == "disabled":
        jobs = [j for j in jobs if not j["enabled"]]

    if as_json:
        console.print_json(json.dumps(jobs))
        return

    table = Table(title="Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("URL")
    table.add_column("Schedule", style="green")
    table.add_column("Status", style="bold")
    table.add_column("Runs", justify="right")
    table.add_column("Last")

    for job in jobs:
        status_str = "[green]enabled[/green]" if job["enabled"] else "[yellow]disabled[/yellow]"
        table.add_row(
            str(job["id"]),
            job["name"],
            job["url"],
            job["schedule"],
            status_str,
            str(job["execution_count"]),
            _status_markup(job["last_status"]),
        )

    console.print(table)


def _set_enabled(job_id: int, enabled: Optional[bool]) -> None:
    job = _get_store().set_enabled(job_id, enabled)
    state = "[green]enabled[/green]" if job.enabled else "[yellow]disabled[/yellow]"
    console.print(f"[green]✓[/green] Job {job.id} {state}")
    console.print("[dim]A running worker picks this up at its next reconcile tick.[/dim]")


@app.command("enable")
@handle_errors
def enable_job(job_id: int = typer.Argument(..., help="ID of the job.")) -> None:
    """Enable a job."""
    _set_enabled(job_id, True)


@app.command("disable")
@handle_errors
def disable_job(job_id: int = typer.Argument(..., help="ID of the job.")) -> None:
    """Disable a job."""
    _set_enabled(job_id, False)


@app.command("toggle")
@handle_errors
def toggle_job(job_id: int = typer.Argument(..., help="ID of the job.")) -> None:
    """Flip a job between enabled and disabled."""
    _set_enabled(job_id, None)


@app.command("delete")
@handle_errors
def delete_job(
    job_id: int = typer.Argument(..., help="ID of the job to delete."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt."),
) -> None:
    """Delete a job together with its execution log.

    Example:
        cronprobe jobs delete 3 --force
    """
    store = _get_store()
    job = store.get_job(job_id)
    log_count = store.count_logs(job_id)

    if not force:
        confirm = typer.confirm(f"Delete job '{job.name}' ({job.id}) and its {log_count} log entries?")
        if not confirm:
            raise typer.Abort()

    store.delete_job(job_id)
    console.print(f"[green]✓[/green] Job deleted: {job_id} ({log_count} log entries removed)")


@app.command("logs")
@handle_errors
def job_logs(
    job_id: int = typer.Argument(..., help="ID of the job."),
    limit: int = typer.Option(100, "--limit", "-l", help="Number of entries to show.", min=1),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show a job's execution log, newest first.

    Example:
        cronprobe jobs logs 3 --limit 20
    """
    store = _get_store()
    job = store.get_job(job_id)
    entries = store.get_logs(job_id, limit=limit)

    if as_json:
        console.print_json(json.dumps(entries))
        return

    table = Table(title=f"Executions of {job.name} ({job.id})")
    table.add_column("Time (UTC)", style="green")
    table.add_column("Status", style="bold")
    table.add_column("Response", justify="right")
    table.add_column("Error", style="red")

    for entry in entries:
        table.add_row(
            entry["created_at"] or "",
            _status_markup(entry["status"]),
            f"{entry['response_time']}ms",
            entry["error_message"] or "",
        )

    console.print(table)


@app.command("probe")
@handle_errors
def probe_job(
    job_id: int = typer.Argument(..., help="ID of the job to probe now."),
    record: bool = typer.Option(False, "--record", help="Append the outcome to the execution log."),
) -> None:
    """Probe a job's URL once, outside of its schedule.

    Exits with the network error code when the request fails before
    any HTTP status arrives.

    Example:
        cronprobe jobs probe 3
    """
    import asyncio
    from cronprobe.config import get_config
    from cronprobe.scheduler.probe import ProbeExecutor

    store = _get_store()
    job = store.get_job(job_id)
    console.print(f"[bold]Probing:[/bold] {job.url}")

    executor = ProbeExecutor.from_config(get_config().probe)
    outcome = asyncio.run(executor.execute(job))

    if outcome.transport_failed:
        console.print(f"[red]✗[/red] {outcome.error_message} after {outcome.response_time_ms}ms")
    else:
        console.print(f"[green]✓[/green] {outcome.status} in {outcome.response_time_ms}ms")

    if record:
        record_id = store.record(outcome)
        console.print(f"[dim]Recorded as log entry {record_id}[/dim]")

    if outcome.transport_failed:
        raise NetworkError(
            f"Probe of job {job.id} failed: {outcome.error_message}",
            details={"url": job.url, "elapsed_ms": outcome.response_time_ms},
        )
