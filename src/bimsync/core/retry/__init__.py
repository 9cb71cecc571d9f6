"""
Retry framework for transient upstream failures.
"""

from bimsync.core.retry.manager import RetryManager
from bimsync.core.retry.policy import (
    DISCOVERY_RETRY_POLICY,
    NO_RETRY_POLICY,
    RetryPolicy,
    RetryState,
    discovery_policy,
)

__all__ = [
    "RetryPolicy",
    "RetryState",
    "DISCOVERY_RETRY_POLICY",
    "NO_RETRY_POLICY",
    "discovery_policy",
    "RetryManager",
]
