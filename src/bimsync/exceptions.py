"""
bimsync exception hierarchy.

All domain-specific exceptions inherit from BimSyncError, so callers can catch
any engine failure with a single base class while still classifying the
outcome (re-authenticate, re-select, try again, escalate) from the subclass.

Hierarchy::

    BimSyncError
    ├── ConfigurationError          - config loading, parsing, validation
    ├── SourceError                 - upstream source failures
    │   ├── AuthError               - missing/expired credential (never retried)
    │   ├── NotFoundError           - parent id unknown to upstream (never retried)
    │   └── TransientNetworkError   - connection reset, 5xx, timeout (retryable)
    ├── TranslationError            - derivative translation outcomes
    │   ├── TranslationFailure      - upstream reported the job failed
    │   └── TimeoutError_           - polling exceeded attempt/time ceiling
    ├── SubscriptionError           - realtime subscription open/close (non-fatal)
    └── RuntimeLoadError            - parsing runtime could not be fetched
"""

from __future__ import annotations


class BimSyncError(Exception):
    """Base exception for all bimsync errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(BimSyncError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Sources -----------------------------------------------------------------


class SourceError(BimSyncError):
    """Raised when an external source rejects or fails a request."""

    def __init__(self, message: str, *, status: int | None = None, details: dict | None = None) -> None:
        super().__init__(message, details={"status": status, **(details or {})})
        self.status = status


class AuthError(SourceError):
    """Raised when the credential is missing, expired, or rejected upstream."""


class NotFoundError(SourceError):
    """Raised when upstream does not know the requested parent id."""


class TransientNetworkError(SourceError):
    """Raised on connection resets, timeouts, and 5xx responses.

    Callers that know the operation is idempotent may retry.
    """


# --- Translation -------------------------------------------------------------


class TranslationError(BimSyncError):
    """Raised when a derivative translation job does not succeed."""


class TranslationFailure(TranslationError):
    """Raised when upstream reports the translation job itself failed."""

    def __init__(self, urn: str, message: str, *, attempts: int = 0, upstream_message: str | None = None) -> None:
        super().__init__(
            f"Translation of '{urn}' failed: {message}",
            details={"urn": urn, "attempts": attempts, "upstream_message": upstream_message},
        )
        self.urn = urn
        self.attempts = attempts
        self.upstream_message = upstream_message


class TimeoutError_(TranslationError):
    """Raised when polling exceeds the attempt or elapsed-time ceiling.

    Named with trailing underscore to avoid shadowing the builtin
    ``TimeoutError``; the public alias ``TranslationTimeoutError``
    is preferred for external use.
    """

    def __init__(self, urn: str, *, attempts: int, elapsed_s: float, upstream_message: str | None = None) -> None:
        super().__init__(
            f"Translation of '{urn}' timed out after {attempts} polls ({elapsed_s:.1f}s)",
            details={"urn": urn, "attempts": attempts, "elapsed_s": elapsed_s, "upstream_message": upstream_message},
        )
        self.urn = urn
        self.attempts = attempts
        self.elapsed_s = elapsed_s
        self.upstream_message = upstream_message


# Public alias so callers don't need the underscore
TranslationTimeoutError = TimeoutError_


# --- Subscriptions -----------------------------------------------------------


class SubscriptionError(BimSyncError):
    """Raised when an upstream subscription cannot be opened or closed."""

    def __init__(self, message: str, *, source: str | None = None, stream_id: str | None = None) -> None:
        super().__init__(message, details={"source": source, "stream_id": stream_id})
        self.source = source
        self.stream_id = stream_id


# --- Runtime -----------------------------------------------------------------


class RuntimeLoadError(BimSyncError):
    """Raised when the geometry parsing runtime cannot be loaded."""

    def __init__(self, message: str, *, url: str | None = None, attempts: int = 0) -> None:
        super().__init__(message, details={"url": url, "attempts": attempts})
        self.url = url
        self.attempts = attempts
