"""
CLI: ``autospine schedule`` - inspect schedule specifications.
"""

from __future__ import annotations

from datetime import datetime

import typer

from autospine.cli.utils import console, print_error, print_json, print_table

app = typer.Typer(no_args_is_help=True)


@app.command("next")
def next_fire_times(
    spec: str = typer.Argument(..., help='Interval ("5m", "every 30s") or cron ("*/5 * * * *")'),
    count: int = typer.Option(5, "--count", "-n", min=1, max=1000, help="How many fire times"),
    timezone: str = typer.Option("UTC", "--timezone", "--tz", help="Timezone for cron schedules"),
    start: str | None = typer.Option(None, "--from", help="ISO 8601 start time (default: now)"),  # noqa: UP007
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate a schedule spec and print its upcoming fire times.

    Example::

        autospine schedule next "*/15 * * * *" --count 3
        autospine schedule next 5m --from 2024-01-01T00:00:00
    """
    from autospine.core.errors import InvalidScheduleError
    from autospine.core.timestamps import ensure_utc, utc_now
    from autospine.scheduling.schedules import parse_schedule

    try:
        schedule = parse_schedule(spec, timezone)
    except InvalidScheduleError as e:
        print_error(e.message, "INVALID_SCHEDULE")
        raise typer.Exit(1) from e

    if start is not None:
        try:
            origin = ensure_utc(datetime.fromisoformat(start))
        except ValueError as e:
            print_error(f"Invalid --from timestamp: {start!r}", "USAGE")
            raise typer.Exit(2) from e
    else:
        origin = utc_now()

    times = schedule.upcoming(origin, count)
    rows = [{"n": i, "fire_at": t.isoformat()} for i, t in enumerate(times, start=1)]

    if json_out:
        print_json({"schedule": schedule.describe(), "from": origin.isoformat(), "fire_times": rows})
        return

    console.print(f"[bold]{schedule.describe()}[/bold]")
    print_table(rows, title="Upcoming fire times")
