"""Command-line interface for autospine (``autospine ...``)."""

from autospine.cli.app import app

__all__ = ["app"]
