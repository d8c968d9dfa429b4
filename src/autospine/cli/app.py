"""
Root Typer application for the autospine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="autospine",
    help="autospine - in-process event dispatch and recurring jobs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from autospine import __version__

        typer.echo(f"autospine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """autospine CLI - inspect configuration and schedules, host an engine."""


from autospine.cli.config import app as config_app  # noqa: E402
from autospine.cli.run import run as run_command  # noqa: E402
from autospine.cli.schedule import app as sched_app  # noqa: E402

app.add_typer(config_app, name="config", help="Configuration inspection.")
app.add_typer(sched_app, name="schedule", help="Schedule specifications.")
app.command("run")(run_command)


if __name__ == "__main__":
    app()
