"""
Per-source adapters.

Both adapters implement SourceAdapter; ``adapter_for`` picks one by source kind.
"""

from bimsync.sources.adapters.acc import AccAdapter
from bimsync.sources.adapters.base import SourceAdapter
from bimsync.sources.adapters.collab import CollabAdapter
from bimsync.sources.client import TokenScopedSourceClient
from bimsync.sources.types import SourceKind

ADAPTERS: dict[SourceKind, type[SourceAdapter]] = {
    SourceKind.ACC: AccAdapter,
    SourceKind.COLLAB: CollabAdapter,
}


def adapter_for(kind: SourceKind | str, client: TokenScopedSourceClient) -> SourceAdapter:
    """Construct the adapter for ``kind`` around a token-scoped client."""
    try:
        adapter_cls = ADAPTERS[SourceKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown source kind '{kind}'. Available: {[k.value for k in ADAPTERS]}") from None
    return adapter_cls(client)


__all__ = [
    "SourceAdapter",
    "AccAdapter",
    "CollabAdapter",
    "ADAPTERS",
    "adapter_for",
]
