"""
Tests for the exception hierarchy.
"""

import pytest

from bimsync.exceptions import (
    AuthError,
    BimSyncError,
    ConfigurationError,
    NotFoundError,
    RuntimeLoadError,
    SourceError,
    SubscriptionError,
    TimeoutError_,
    TranslationError,
    TranslationFailure,
    TranslationTimeoutError,
    TransientNetworkError,
)


class TestHierarchy:
    """Verify all exceptions inherit from BimSyncError."""

    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigurationError,
            SourceError,
            AuthError,
            NotFoundError,
            TransientNetworkError,
            TranslationError,
            TranslationFailure,
            TimeoutError_,
            SubscriptionError,
            RuntimeLoadError,
        ],
    )
    def test_inherits_from_bimsync_error(self, exc_class):
        assert issubclass(exc_class, BimSyncError)

    @pytest.mark.parametrize("exc_class", [AuthError, NotFoundError, TransientNetworkError])
    def test_source_errors(self, exc_class):
        assert issubclass(exc_class, SourceError)

    def test_translation_outcomes(self):
        assert issubclass(TranslationFailure, TranslationError)
        assert issubclass(TimeoutError_, TranslationError)

    def test_timeout_alias(self):
        assert TranslationTimeoutError is TimeoutError_

    def test_timeout_does_not_shadow_builtin(self):
        assert not issubclass(TimeoutError_, TimeoutError)


class TestDetails:
    """Exceptions carry structured details."""

    def test_base_message_and_details(self):
        err = BimSyncError("boom", details={"k": 1})
        assert str(err) == "boom"
        assert err.message == "boom"
        assert err.details == {"k": 1}

    def test_details_default_empty(self):
        assert BimSyncError("x").details == {}

    def test_source_error_status(self):
        err = AuthError("rejected", status=401)
        assert err.status == 401
        assert err.details["status"] == 401

    def test_translation_failure(self):
        err = TranslationFailure("urn:1", "bad input", attempts=3, upstream_message="Unsupported file format")
        assert "urn:1" in str(err)
        assert "bad input" in str(err)
        assert err.attempts == 3
        assert err.upstream_message == "Unsupported file format"
        assert err.details["urn"] == "urn:1"

    def test_timeout(self):
        err = TimeoutError_("urn:1", attempts=60, elapsed_s=123.45, upstream_message="50% complete")
        assert "60 polls" in str(err)
        assert "123.5s" in str(err)
        assert err.elapsed_s == 123.45
        assert err.upstream_message == "50% complete"

    def test_subscription_error(self):
        err = SubscriptionError("closed", source="collab", stream_id="p1")
        assert err.source == "collab"
        assert err.stream_id == "p1"

    def test_runtime_load_error(self):
        err = RuntimeLoadError("empty", url="http://x/web-ifc.wasm", attempts=3)
        assert err.url == "http://x/web-ifc.wasm"
        assert err.attempts == 3
        assert err.details == {"url": "http://x/web-ifc.wasm", "attempts": 3}

    def test_catch_all_with_base(self):
        with pytest.raises(BimSyncError):
            raise NotFoundError("missing", status=404)
