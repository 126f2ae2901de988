"""Root logger setup for command line entry points."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", *, console: Console | None = None) -> None:
    """Route all ``mailmirror`` loggers through a single rich handler.

    Calling this more than once replaces the previous handler instead of
    stacking duplicates.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())
    # imapclient logs every protocol line at DEBUG
    logging.getLogger("imapclient").setLevel(logging.WARNING)
