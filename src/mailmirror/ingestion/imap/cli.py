"""CLI commands for running the IMAP sync."""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ...configuration.cli import load_settings_or_exit, open_sink
from ...configuration.logging_setup import configure_logging
from ...notifications.broadcaster import NEW_EMAIL_EVENT, LocalBroadcaster
from .descriptor import AccountRegistry
from .orchestrator import SyncOrchestrator
from .sync_state import AccountSyncStatus

console = Console()


def _status_table(statuses: List[AccountSyncStatus]) -> Table:
    table = Table(title="IMAP accounts")
    table.add_column("Account", style="cyan")
    table.add_column("State")
    table.add_column("Backfilled", justify="right")
    table.add_column("Reconnects", justify="right")
    table.add_column("Last error")
    for status in statuses:
        style = "green" if status.is_live else "red"
        table.add_row(
            status.account_id,
            f"[{style}]{status.state.value}[/{style}]",
            str(status.backfill_indexed),
            str(status.reconnects),
            status.last_error or "",
        )
    return table


async def _run(orchestrator: SyncOrchestrator, *, once: bool) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops: fall back to KeyboardInterrupt
            pass

    await orchestrator.start_sync()
    statuses = orchestrator.statuses()
    if statuses:
        console.print(_status_table(statuses))
    if orchestrator.mock_seeded:
        console.print("[yellow]No live IMAP accounts; serving mock data[/yellow]")

    try:
        if not once:
            console.print("Watching for new mail. Press Ctrl+C to stop.")
            await stop.wait()
    finally:
        await orchestrator.stop_sync()


def sync_command(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings JSON file"),
    once: bool = typer.Option(False, "--once", help="Backfill, print status and exit"),
) -> None:
    """Mirror every configured mailbox and follow new mail.

    Examples:
        IMAP1_USER=me@example.com IMAP1_HOST=imap.example.com IMAP1_PASS=... mailmirror sync
    """
    settings = load_settings_or_exit(config)
    configure_logging(settings.logging.level)

    registry = AccountRegistry.from_env()
    broadcaster = LocalBroadcaster()
    broadcaster.subscribe(
        NEW_EMAIL_EVENT,
        lambda payload: console.print(f"[bold green]New mail[/bold green] for {payload['accountId']}"),
    )
    with open_sink(settings) as sink:
        orchestrator = SyncOrchestrator(
            accounts=registry.list(),
            sink=sink,
            broadcaster=broadcaster,
            settings=settings.sync,
        )
        try:
            asyncio.run(_run(orchestrator, once=once))
        except KeyboardInterrupt:
            console.print("Stopped.")


def accounts_command(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List accounts resolved from IMAP<n>_* environment variables."""
    accounts = AccountRegistry.from_env().list()
    if json_output:
        print(json.dumps([account.describe() for account in accounts], indent=2))
        return
    if not accounts:
        console.print("No IMAP accounts configured (set IMAP1_USER, IMAP1_HOST, IMAP1_PASS).")
        return
    table = Table(title="Configured IMAP accounts")
    table.add_column("Account", style="cyan")
    table.add_column("Host")
    table.add_column("Port", justify="right")
    table.add_column("TLS")
    for account in accounts:
        table.add_row(account.id, account.host, str(account.port), "yes" if account.use_ssl else "no")
    console.print(table)


__all__ = ["accounts_command", "sync_command"]
