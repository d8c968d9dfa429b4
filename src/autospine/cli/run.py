"""
CLI: ``autospine run`` - host an engine defined in user code.
"""

from __future__ import annotations

import asyncio
import importlib
import signal
import sys
from pathlib import Path
from typing import Any

import typer

from autospine.cli.utils import console, print_error


def load_engine(target: str) -> Any:
    """Resolve ``module:attr`` to an ``AutomationEngine``.

    ``attr`` may be an engine instance or a zero-argument factory returning one.
    """
    from autospine.engine import AutomationEngine

    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter(f"Expected MODULE:ATTR, got {target!r}")

    if str(Path.cwd()) not in sys.path:
        sys.path.insert(0, str(Path.cwd()))
    module = importlib.import_module(module_name)

    obj: Any = module
    for part in attr.split("."):
        obj = getattr(obj, part)

    if not isinstance(obj, AutomationEngine) and callable(obj):
        obj = obj()
    if not isinstance(obj, AutomationEngine):
        raise typer.BadParameter(f"{target!r} is not an AutomationEngine (got {type(obj).__name__})")
    return obj


async def _serve(engine: Any, duration: float | None, drain_timeout: float | None) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    async with engine:
        try:
            await asyncio.wait_for(stop.wait(), timeout=duration)
        except TimeoutError:
            pass
        if drain_timeout is None:
            return await engine.stop()
        return await engine.stop(timeout=drain_timeout)


def run(
    target: str = typer.Argument(..., help="MODULE:ATTR of an engine or engine factory"),
    duration: float | None = typer.Option(None, "--for", help="Stop after N seconds"),  # noqa: UP007
    drain_timeout: float | None = typer.Option(  # noqa: UP007
        None, "--drain-timeout", help="Seconds to wait for in-flight work on shutdown"
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),  # noqa: UP007
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs"),  # noqa: UP007
) -> None:
    """Start an engine and run until interrupted, then drain.

    Example::

        autospine run shop.automation:engine
        autospine run shop.automation:build_engine --for 60 --drain-timeout 10
    """
    from autospine.core.errors import ConfigError
    from autospine.core.logging import configure_logging
    from autospine.core.settings import get_settings

    try:
        settings = get_settings()
    except ConfigError as e:
        print_error(e.message, "CONFIG")
        raise typer.Exit(1) from e

    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_json if json_logs is None else json_logs,
        service=settings.service_name,
    )

    try:
        engine = load_engine(target)
    except (ImportError, AttributeError) as e:
        print_error(f"Cannot load {target!r}: {e}", "LOAD")
        raise typer.Exit(1) from e

    console.print(
        f"[bold green]Starting autospine engine[/bold green] "
        f"(subscriptions={len(engine.registry)}, jobs={len(engine.scheduler)})"
    )
    try:
        left = asyncio.run(_serve(engine, duration, drain_timeout))
    except KeyboardInterrupt:
        console.print("\n[yellow]Engine stopped by user[/yellow]")
        return

    if left:
        console.print(f"[yellow]Stopped with {left} task(s) still in flight[/yellow]")
    else:
        console.print("[green]Engine stopped cleanly[/green]")
