"""
End-to-end sync orchestration.
"""

from bimsync.sync.orchestrator import SyncHandle, SyncOrchestrator, SyncResult, SyncStatus

__all__ = [
    "SyncOrchestrator",
    "SyncHandle",
    "SyncResult",
    "SyncStatus",
]
