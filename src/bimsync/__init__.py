"""
bimsync - External model source synchronization engine.

Discovers BIM models in external sources, drives their derivative
translation to a renderable manifest, loads the geometry parsing runtime and
follows newly published versions.
"""

__version__ = "0.1.0"

# Global config
from bimsync.config.loader import Config, load_config
from bimsync.config.settings import Settings, load_settings
from bimsync.config.singleton import config

# Exceptions
from bimsync.exceptions import (
    AuthError,
    BimSyncError,
    ConfigurationError,
    NotFoundError,
    RuntimeLoadError,
    SourceError,
    SubscriptionError,
    TimeoutError_,
    TransientNetworkError,
    TranslationError,
    TranslationFailure,
    TranslationTimeoutError,
)

# Components
from bimsync.runtime.loader import BinaryRuntimeLoader, RuntimeBinary
from bimsync.sources.client import TokenScopedSourceClient
from bimsync.sources.discovery import SourceDiscoveryService
from bimsync.sources.types import (
    Account,
    DerivativeStream,
    ExternalSource,
    Hub,
    Item,
    Manifest,
    Project,
    ResourceRef,
    SourceKind,
    Version,
    VersionStatus,
)
from bimsync.subscriptions.manager import DisposeOutcome, RealtimeSubscriptionManager, Subscription
from bimsync.sync.orchestrator import SyncHandle, SyncOrchestrator, SyncResult, SyncStatus
from bimsync.translation.job import JobState, TranslationJob
from bimsync.translation.tracker import DerivativeTranslationTracker

# Logging utilities
from bimsync.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    # Components
    "TokenScopedSourceClient",
    "SourceDiscoveryService",
    "DerivativeTranslationTracker",
    "RealtimeSubscriptionManager",
    "BinaryRuntimeLoader",
    "SyncOrchestrator",
    "SyncHandle",
    "SyncResult",
    "SyncStatus",
    # Data model
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
    "TranslationJob",
    "JobState",
    "Subscription",
    "DisposeOutcome",
    "RuntimeBinary",
    # Config
    "config",
    "Config",
    "load_config",
    "Settings",
    "load_settings",
    # Exceptions
    "BimSyncError",
    "ConfigurationError",
    "SourceError",
    "AuthError",
    "NotFoundError",
    "TransientNetworkError",
    "TranslationError",
    "TranslationFailure",
    "TimeoutError_",
    "TranslationTimeoutError",
    "SubscriptionError",
    "RuntimeLoadError",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
]
