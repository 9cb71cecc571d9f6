"""
Realtime "new version published" subscriptions.
"""

from bimsync.subscriptions.manager import (
    DisposeOutcome,
    RealtimeSubscriptionManager,
    Subscription,
    VersionHandler,
)
from bimsync.subscriptions.transports import (
    GraphQLWebSocketTransport,
    SubscriptionTransport,
    VersionPollingTransport,
)

__all__ = [
    "RealtimeSubscriptionManager",
    "Subscription",
    "DisposeOutcome",
    "VersionHandler",
    "SubscriptionTransport",
    "VersionPollingTransport",
    "GraphQLWebSocketTransport",
]
