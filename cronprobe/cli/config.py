"""cronprobe config command - Inspect and validate configuration."""

from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

app = typer.Typer(help="Inspect and validate configuration.")
console = Console()


@app.command("show")
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (worker, probe, logging, paths).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, json).",
    ),
) -> None:
    """Show current configuration.

    Example:
        cronprobe config show
        cronprobe config show worker
        cronprobe config show --format json
    """
    from cronprobe.config import config_to_dict, export_config_json, get_config

    config = get_config()

    if format == "json":
        console.print(Syntax(export_config_json(config), "json", theme="monokai"))
        return

    data = config_to_dict(config)
    sections = {
        "worker": data["worker"],
        "probe": data["probe"],
        "logging": data["logging"],
        "paths": {
            "config_dir": data["config_dir"],
            "data_dir": data["data_dir"],
            "database_url": data["database_url"],
        },
    }

    if section:
        console.print(f"[bold]Configuration: {section}[/bold]")
    else:
        console.print("[bold]cronprobe Configuration[/bold]")
    console.print()

    sections_to_show = [section] if section else sections.keys()

    for sec in sections_to_show:
        if sec not in sections:
            console.print(f"[red]Unknown section: {sec}[/red]")
            continue

        table = Table(title=sec.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")

        for key, value in sections[sec].items():
            table.add_row(key, "" if value is None else str(value))

        console.print(table)
        console.print()


@app.command("validate")
def validate(
    config_file: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
) -> None:
    """Validate configuration values.

    Example:
        cronprobe config validate
    """
    from pathlib import Path

    from cronprobe.config import load_config, validate_config

    config = load_config(Path(config_file) if config_file else None)

    console.print("[bold]Validating configuration...[/bold]")
    errors = validate_config(config)

    all_passed = True
    if errors:
        console.print()
        console.print("[bold yellow]Validation Results:[/bold yellow]")
        for error in errors:
            if error.severity == "error":
                status = "[red]✗[/red]"
                all_passed = False
            else:
                status = "[yellow]![/yellow]"
            console.print(f"  {status} [{error.severity.upper()}] {error.field}: {error.message}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=1)
