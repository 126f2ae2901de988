"""Query, seed and relabel the local mirror."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..configuration.cli import error_console, load_settings_or_exit, open_sink
from ..index import SearchFilters, seed_mock_documents

console = Console()


def search_command(
    q: Optional[str] = typer.Option(None, "--q", "-q", help="Text to look for"),
    account: Optional[str] = typer.Option(None, "--account", "-a", help="Account id"),
    folder: Optional[str] = typer.Option(None, "--folder", "-f"),
    category: Optional[str] = typer.Option(None, "--category"),
    limit: int = typer.Option(50, "--limit", "-n", min=1, max=1000),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings JSON file"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Search indexed emails, newest first."""
    settings = load_settings_or_exit(config)
    filters = SearchFilters(q=q, account_id=account, folder=folder, category=category, limit=limit)
    with open_sink(settings) as sink:
        results = sink.search(filters)

    if json_output:
        print(json.dumps([doc.model_dump(by_alias=True) for doc in results], indent=2))
        return
    if not results:
        console.print("No emails found.")
        return

    table = Table(title=f"{len(results)} email(s)")
    table.add_column("Date")
    table.add_column("Account", style="cyan")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("Category", style="magenta")
    for doc in results:
        table.add_row(doc.date, doc.account_id, doc.from_address, doc.subject, doc.category)
    console.print(table)


def categorize_command(
    document_id: str = typer.Argument(..., help="Document id, e.g. me@example.com:INBOX:42"),
    category: str = typer.Argument(..., help="New category label"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings JSON file"),
) -> None:
    """Set the category of one indexed email."""
    settings = load_settings_or_exit(config)
    with open_sink(settings) as sink:
        updated = sink.update_category(document_id, category)
    if not updated:
        error_console.print(f"[red]No indexed email with id {document_id}[/red]")
        raise typer.Exit(1)
    console.print(f"{document_id} is now [magenta]{category}[/magenta].")


def seed_command(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings JSON file"),
) -> None:
    """Write the demo documents into the configured mirror."""
    settings = load_settings_or_exit(config)
    with open_sink(settings) as sink:
        stored = seed_mock_documents(sink)
    console.print(f"Seeded {stored} mock document(s).")


__all__ = ["categorize_command", "search_command", "seed_command"]
