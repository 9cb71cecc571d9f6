"""
Base source adapter interface.

Every external platform (ACC, Collab) implements this interface so the
discovery service, translation tracker and subscription transports can walk
and drive two structurally different hierarchies the same way:

    account -> hub/workspace -> project -> item -> version
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod

from bimsync.sources.client import TokenScopedSourceClient
from bimsync.sources.types import (
    Account,
    Hub,
    Item,
    Project,
    SourceKind,
    TranslationStatus,
    Version,
)

# Separator for composite opaque ids ("{parent}/{child}")
REF_SEPARATOR = "/"


def join_ref(*parts: str) -> str:
    return REF_SEPARATOR.join(parts)


def split_ref(ref: str, expected: int = 2) -> list[str]:
    """Split a composite id; raise ValueError if it doesn't have ``expected`` parts."""
    parts = ref.split(REF_SEPARATOR, expected - 1)
    if len(parts) != expected or not all(parts):
        raise ValueError(f"Malformed resource id '{ref}' (expected {expected} parts joined by '{REF_SEPARATOR}')")
    return parts


def urlsafe_urn(value: str) -> str:
    """URL-safe, unpadded base64, the encoding derivative services expect for urns."""
    return base64.urlsafe_b64encode(value.encode()).decode().rstrip("=")


class SourceAdapter(ABC):
    """
    Abstract base class for per-source adapters.

    Adapters are constructed per call scope around one
    TokenScopedSourceClient and hold no other state, so a credential never
    outlives the orchestration run that supplied it.

    Implementations provided:
    - AccAdapter: enterprise construction cloud REST hierarchy + derivative jobs
    - CollabAdapter: collaboration service GraphQL hierarchy + object store
    """

    kind: SourceKind

    def __init__(self, client: TokenScopedSourceClient):
        self.client = client

    @abstractmethod
    async def list_accounts(self) -> list[Account]: ...

    @abstractmethod
    async def list_hubs(self, account_id: str) -> list[Hub]: ...

    @abstractmethod
    async def list_projects(self, hub_id: str) -> list[Project]: ...

    @abstractmethod
    async def list_items(self, project_id: str) -> list[Item]: ...

    @abstractmethod
    async def list_versions(self, item_id: str) -> list[Version]: ...

    @abstractmethod
    async def submit_translation(self, urn: str) -> TranslationStatus:
        """Start translation; a SUCCEEDED status means the derivative already exists."""
        ...

    @abstractmethod
    async def translation_status(self, urn: str) -> TranslationStatus: ...

    @abstractmethod
    def stream_id_for(self, item_id: str) -> str:
        """Subscription stream that publishes new versions of ``item_id``."""
        ...

    def item_id_for_event(self, stream_id: str, payload_item_id: str | None) -> str | None:
        """Map an event's upstream item id back to the composite item id."""
        return payload_item_id

    async def fetch_latest_version(self, item_id: str) -> Version | None:
        """Newest published version of an item, in upstream order."""
        for version in await self.list_versions(item_id):
            if version.is_published:
                return version
        return None
