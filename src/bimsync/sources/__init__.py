"""
External model sources: resource types, token-scoped client, adapters and discovery.

Only the plain types are re-exported here; import the client, adapters and
discovery service from their modules.
"""

from bimsync.sources.types import (
    Account,
    DerivativeStream,
    ExternalSource,
    Hub,
    Item,
    Manifest,
    NewVersionEvent,
    Project,
    ResourceRef,
    SourceKind,
    TranslationPhase,
    TranslationStatus,
    Version,
    VersionStatus,
)

__all__ = [
    "SourceKind",
    "ExternalSource",
    "ResourceRef",
    "Account",
    "Hub",
    "Project",
    "Item",
    "Version",
    "VersionStatus",
    "DerivativeStream",
    "Manifest",
    "TranslationPhase",
    "TranslationStatus",
    "NewVersionEvent",
]
