"""Helpers shared by the mailmirror commands."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console

from ..index import create_sink
from ..index.sink import IndexingSink
from .settings import Settings, load_settings

error_console = Console(stderr=True)


def load_settings_or_exit(config: Optional[Path]) -> Settings:
    """Load settings, printing the problem and exiting with status 1 if invalid."""
    try:
        return load_settings(config)
    except ValueError as exc:
        error_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc


@contextmanager
def open_sink(settings: Settings) -> Iterator[IndexingSink]:
    """Open the configured index and close it on exit."""
    sink = create_sink(settings.index)
    try:
        yield sink
    finally:
        close = getattr(sink, "close", None)
        if close is not None:
            close()


__all__ = ["error_console", "load_settings_or_exit", "open_sink"]
