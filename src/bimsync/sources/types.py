"""
Type definitions for external sources and the resources discovered in them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class SourceKind(StrEnum):
    """Supported external model platforms."""

    ACC = "acc"  # Enterprise construction cloud (Autodesk Platform Services)
    COLLAB = "collab"  # Model collaboration / version control service (Speckle)


@dataclass(frozen=True)
class ExternalSource:
    """
    Which adapter and which credential scope to use.

    The credential itself is never stored here; ``credential_ref`` only names
    it so logs can tell sessions apart.
    """

    kind: SourceKind
    base_url: str
    credential_ref: str = ""

    def __post_init__(self):
        object.__setattr__(self, "kind", SourceKind(self.kind))
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.base_url}"


class VersionStatus(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"


@dataclass(frozen=True)
class ResourceRef:
    """Opaque upstream id plus a human-readable name."""

    id: str
    display_name: str


@dataclass(frozen=True)
class Account(ResourceRef):
    pass


@dataclass(frozen=True)
class Hub(ResourceRef):
    pass


@dataclass(frozen=True)
class Project(ResourceRef):
    pass


@dataclass(frozen=True)
class Item(ResourceRef):
    pass


@dataclass(frozen=True)
class Version(ResourceRef):
    urn: str = ""
    status: VersionStatus = VersionStatus.PUBLISHED
    created_at: str | None = None

    @property
    def is_published(self) -> bool:
        return self.status == VersionStatus.PUBLISHED


@dataclass(frozen=True)
class DerivativeStream:
    """One renderable geometry stream produced by translation."""

    guid: str
    name: str = ""
    role: str = "3d"
    output_type: str = "svf2"
    mime: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "guid": self.guid,
            "name": self.name,
            "role": self.role,
            "output_type": self.output_type,
            "mime": self.mime,
        }


@dataclass(frozen=True)
class Manifest:
    """Derivative geometry streams of a completed translation."""

    urn: str
    streams: tuple[DerivativeStream, ...] = field(default_factory=tuple)

    @property
    def derivative_count(self) -> int:
        return len(self.streams)

    def to_dict(self) -> dict[str, Any]:
        return {"urn": self.urn, "streams": [s.to_dict() for s in self.streams]}


class TranslationPhase(StrEnum):
    """Upstream translation status, normalised across source kinds."""

    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class TranslationStatus:
    phase: TranslationPhase
    manifest: Manifest | None = None
    message: str | None = None
    progress: str | None = None


@dataclass(frozen=True)
class NewVersionEvent:
    """A version published upstream on a subscribed stream."""

    stream_id: str
    version: Version
    item_id: str | None = None
