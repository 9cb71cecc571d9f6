"""
Resource hierarchy discovery.

SourceDiscoveryService walks account -> hub -> project -> item -> version for
one source through its adapter. Nothing is cached: every call reflects
upstream state at call time.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from bimsync.exceptions import NotFoundError
from bimsync.sources.adapters import SourceAdapter, adapter_for
from bimsync.sources.client import TokenScopedSourceClient
from bimsync.sources.types import Account, ExternalSource, Hub, Item, Project, Version
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.sources.discovery")


class SourceDiscoveryService:
    """
    Walks an external source's resource hierarchy.

    Every operation returns refs in upstream order and fails with AuthError
    (missing/expired credential, raised before any network call),
    NotFoundError (unknown parent id) or TransientNetworkError (connection
    failure or 5xx; the caller may retry).

    Example:
        discovery = SourceDiscoveryService.for_source(source, token)
        for account in await discovery.list_accounts():
            hubs = await discovery.list_hubs(account.id)
    """

    def __init__(self, adapter: SourceAdapter):
        self.adapter = adapter

    @classmethod
    def for_source(cls, source: ExternalSource, credential: str | None, *, timeout: float = 30.0):
        """Build a service around a fresh client scoped to ``credential``."""
        client = TokenScopedSourceClient(source.base_url, credential, timeout=timeout)
        return cls(adapter_for(source.kind, client))

    @property
    def kind(self):
        return self.adapter.kind

    async def list_accounts(self) -> list[Account]:
        return await self._list("accounts", self.adapter.list_accounts)

    async def list_hubs(self, account_id: str) -> list[Hub]:
        return await self._list("hubs", self.adapter.list_hubs, account_id)

    async def list_projects(self, hub_id: str) -> list[Project]:
        return await self._list("projects", self.adapter.list_projects, hub_id)

    async def list_items(self, project_id: str) -> list[Item]:
        return await self._list("items", self.adapter.list_items, project_id)

    async def list_versions(self, item_id: str) -> list[Version]:
        return await self._list("versions", self.adapter.list_versions, item_id)

    async def latest_version(self, item_id: str) -> Version:
        """
        Newest published version of an item.

        Raises:
            NotFoundError: If the item has no published version
        """
        self.adapter.client.check_credential()
        version = await self.adapter.fetch_latest_version(item_id)
        if version is None:
            raise NotFoundError(f"Item '{item_id}' has no published version")
        return version

    async def _list(self, what: str, func: Callable[..., Awaitable[list[Any]]], *args: str) -> list[Any]:
        self.adapter.client.check_credential()
        refs = await func(*args)
        parent = f" under '{args[0]}'" if args else ""
        logger.debug(f"[{self.kind}] listed {len(refs)} {what}{parent}")
        return refs
