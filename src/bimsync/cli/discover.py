"""
bimsync discover - Walk an external source's resource hierarchy.

    bimsync discover accounts --source acc
    bimsync discover hubs <account-id> --source acc
    bimsync discover versions <item-id> --source collab
"""

import asyncio
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from bimsync.core.initialization import initialize
from bimsync.core.retry import RetryManager, discovery_policy
from bimsync.exceptions import BimSyncError
from bimsync.sources.discovery import SourceDiscoveryService
from bimsync.sources.types import ExternalSource, ResourceRef, SourceKind, Version
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.cli.discover")

console = Console()


class Level(StrEnum):
    ACCOUNTS = "accounts"
    HUBS = "hubs"
    PROJECTS = "projects"
    ITEMS = "items"
    VERSIONS = "versions"


# Parent each level is listed under
PARENTS = {
    Level.HUBS: "account",
    Level.PROJECTS: "hub",
    Level.ITEMS: "project",
    Level.VERSIONS: "item",
}


def discover(
    level: Level = typer.Argument(..., help="Hierarchy level to list"),
    parent_id: str | None = typer.Argument(None, help="Parent id (required for everything below accounts)"),
    source: SourceKind = typer.Option(SourceKind.ACC, "--source", "-s", help="Source kind"),
    token: str | None = typer.Option(None, "--token", "-t", envvar="BIMSYNC_TOKEN", help="Bearer token"),
    env: str | None = typer.Option(None, help="Environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    List one level of the resource hierarchy, in upstream order.
    """
    if level in PARENTS and not parent_id:
        console.print(f"[red]Error:[/red] listing {level} needs a {PARENTS[level]} id")
        raise typer.Exit(2)

    try:
        _, settings = initialize(project_dir, env=env, verbose=verbose)
        source_settings = settings.source(source)
        discovery = SourceDiscoveryService.for_source(
            ExternalSource(kind=source, base_url=source_settings.base_url),
            token,
            timeout=source_settings.timeout_s,
        )
        policy = discovery_policy(
            settings.discovery.max_attempts, settings.discovery.initial_delay, settings.discovery.max_delay
        )
        refs = asyncio.run(list_level(discovery, level, parent_id, RetryManager(), policy))
    except BimSyncError as e:
        logger.debug(f"discover {level} failed: {e!r}")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    console.print(render(level, refs, source))


async def list_level(discovery: SourceDiscoveryService, level: Level, parent_id, retry: RetryManager, policy):
    func = {
        Level.ACCOUNTS: discovery.list_accounts,
        Level.HUBS: discovery.list_hubs,
        Level.PROJECTS: discovery.list_projects,
        Level.ITEMS: discovery.list_items,
        Level.VERSIONS: discovery.list_versions,
    }[level]
    args = () if level == Level.ACCOUNTS else (parent_id,)
    return await retry.execute(func, *args, policy=policy, operation=f"list {level}")


def render(level: Level, refs: list[ResourceRef], source: SourceKind) -> Table:
    table = Table(title=f"{level.value.capitalize()} ({len(refs)}) - {source}", show_header=True)
    table.add_column("ID", style="cyan", overflow="fold")
    table.add_column("Name", style="green")
    if level == Level.VERSIONS:
        table.add_column("URN", style="dim", overflow="fold")
        table.add_column("Status", style="yellow")
        table.add_column("Created", style="dim")

    for ref in refs:
        if isinstance(ref, Version):
            table.add_row(Text(ref.id), Text(ref.display_name), Text(ref.urn), ref.status.value, ref.created_at or "-")
        else:
            table.add_row(Text(ref.id), Text(ref.display_name))
    return table
