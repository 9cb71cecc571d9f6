"""
bimsync sync - Translate an item's latest version and follow new versions.

    bimsync sync <item-id> --source acc
    bimsync sync <item-id> --source collab --watch
"""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from bimsync.config.settings import Settings
from bimsync.core.initialization import initialize
from bimsync.exceptions import BimSyncError
from bimsync.sources.types import SourceKind
from bimsync.sync.orchestrator import SyncOrchestrator, SyncResult, SyncStatus
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.cli.sync")

console = Console()

STATUS_STYLES = {
    SyncStatus.SUCCEEDED: "green",
    SyncStatus.FAILED: "red",
    SyncStatus.TIMED_OUT: "yellow",
    SyncStatus.ERROR: "red",
}


def sync(
    item_id: str = typer.Argument(..., help="Item id as listed by 'bimsync discover items'"),
    source: SourceKind = typer.Option(SourceKind.ACC, "--source", "-s", help="Source kind"),
    token: str | None = typer.Option(None, "--token", "-t", envvar="BIMSYNC_TOKEN", help="Bearer token"),
    watch: bool = typer.Option(False, "--watch", "-w", help="Stay subscribed and re-sync on new versions"),
    record: bool = typer.Option(False, "--record", help="Print the {urn, manifest} record as JSON"),
    env: str | None = typer.Option(None, help="Environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    Sync one item: translate its latest version and report the manifest.
    """
    try:
        _, settings = initialize(project_dir, env=env, verbose=verbose)
        result = asyncio.run(run_sync(settings, source, item_id, token, watch=watch))
    except BimSyncError as e:
        logger.debug(f"sync {item_id} failed: {e!r}")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[dim]Stopped watching[/dim]")
        raise typer.Exit(0) from None

    if result is None:
        console.print("[yellow]Sync ended before producing a result[/yellow]")
        raise typer.Exit(1)

    if record:
        typer.echo(json.dumps(result.to_record(), indent=2))
    else:
        console.print(render(result))

    if not result.ok:
        raise typer.Exit(1)


async def run_sync(
    settings: Settings, kind: SourceKind, item_id: str, token: str | None, *, watch: bool = False
) -> SyncResult | None:
    orchestrator = SyncOrchestrator(settings)
    source = orchestrator.source_for(kind)
    try:
        handle = await orchestrator.begin_sync(source, item_id, token)
        result = await handle.wait()
        if watch and result is not None and result.subscribed:
            console.print(render(result))
            handle.on_manifest_ready(_announce)
            console.print(f"[dim]Watching {item_id} for new versions (Ctrl+C to stop)[/dim]")
            await asyncio.Event().wait()
        return result
    finally:
        await orchestrator.close()


def _announce(result: SyncResult) -> None:
    console.print(f"[green]Manifest ready[/green] {result.urn} ({result.manifest.derivative_count} derivatives)")


def render(result: SyncResult) -> Table:
    style = STATUS_STYLES.get(result.status, "white")
    table = Table(title=f"Sync {result.item_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", overflow="fold")
    for key, value in result.get_summary().items():
        if value is None or key == "item_id":
            continue
        if key == "status":
            table.add_row(key, Text(str(value), style=style))
        else:
            table.add_row(key, Text(str(value)))
    return table
