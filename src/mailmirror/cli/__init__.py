"""Command line entry points for mailmirror."""

from typer import Typer

from ..ingestion.imap.cli import accounts_command, sync_command
from .search import categorize_command, search_command, seed_command


cli = Typer(help="mailmirror command line tools", no_args_is_help=True)
cli.command("sync")(sync_command)
cli.command("accounts")(accounts_command)
cli.command("search")(search_command)
cli.command("seed")(seed_command)
cli.command("categorize")(categorize_command)

__all__ = ["cli"]
