"""
CLI: ``autospine config`` - configuration inspection.
"""

from __future__ import annotations

import typer
from rich.table import Table

from autospine.cli.utils import console, print_error

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective configuration (environment + .env)."""
    from autospine.core.errors import ConfigError
    from autospine.core.settings import get_settings, reset_settings

    reset_settings()
    try:
        settings = get_settings()
    except ConfigError as e:
        print_error(e.message, "CONFIG")
        raise typer.Exit(1) from e

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in sorted(settings.model_dump().items()):
            console.print(f"AUTOSPINE_{key.upper()}={'' if value is None else value}")
        return

    if format != "table":
        print_error(f"Unknown format: {format}", "USAGE")
        raise typer.Exit(2)

    table = Table(title="autospine settings")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)
