"""
Sync orchestration.

SyncOrchestrator runs the end-to-end flow for one item of one source:

    discover latest version -> submit/poll translation -> load runtime
    -> hand manifest + runtime to the geometry consumer -> subscribe

A version published later on the item's stream re-enters the flow for that
version on the same SyncHandle. Translation failures and timeouts are
reported as SyncResults and never retried automatically.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from bimsync.config.settings import Settings
from bimsync.core.retry import RetryManager, discovery_policy
from bimsync.exceptions import (
    BimSyncError,
    RuntimeLoadError,
    SubscriptionError,
    TranslationFailure,
)
from bimsync.runtime.loader import BinaryRuntimeLoader, RuntimeBinary
from bimsync.sources.adapters import SourceAdapter, adapter_for
from bimsync.sources.client import TokenScopedSourceClient
from bimsync.sources.discovery import SourceDiscoveryService
from bimsync.sources.types import ExternalSource, Manifest, NewVersionEvent, SourceKind, Version
from bimsync.subscriptions.manager import DisposeOutcome, RealtimeSubscriptionManager
from bimsync.subscriptions.transports import GraphQLWebSocketTransport, SubscriptionTransport, VersionPollingTransport
from bimsync.translation.job import JobState, TranslationJob
from bimsync.translation.tracker import DerivativeTranslationTracker
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.sync.orchestrator")

GeometryConsumer = Callable[[Manifest, RuntimeBinary], Awaitable[Any] | Any]
ManifestCallback = Callable[["SyncResult"], Awaitable[Any] | Any]
AdapterFactory = Callable[[ExternalSource, str | None], SourceAdapter]
TransportFactory = Callable[[ExternalSource, SourceAdapter, str | None], SubscriptionTransport]


class SyncStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ERROR = "error"  # discovery/auth/network failure before or during translation


@dataclass
class SyncResult:
    """Outcome of one pass through the sync flow for one version."""

    status: SyncStatus
    item_id: str
    urn: str | None = None
    version_id: str | None = None
    manifest: Manifest | None = None
    job_id: str | None = None
    attempts: int = 0
    error: Exception | None = None
    runtime_error: RuntimeLoadError | None = None
    consumer_error: Exception | None = None
    subscribed: bool = False

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.SUCCEEDED

    def to_record(self) -> dict[str, Any]:
        """The ``{urn, manifest}`` record handed to the persistence layer."""
        return {"urn": self.urn, "manifest": self.manifest.to_dict() if self.manifest else None}

    def get_summary(self) -> dict[str, Any]:
        upstream = getattr(self.error, "upstream_message", None)
        return {
            "status": self.status.value,
            "item_id": self.item_id,
            "version_id": self.version_id,
            "urn": self.urn,
            "job_id": self.job_id,
            "attempts": self.attempts,
            "derivative_count": self.manifest.derivative_count if self.manifest else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "error": str(self.error) if self.error else None,
            "upstream_message": upstream,
            "runtime_error": str(self.runtime_error) if self.runtime_error else None,
            "subscribed": self.subscribed,
        }


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class SyncHandle:
    """
    Caller-side view of one sync session.

    Example:
        handle = await orchestrator.begin_sync(source, item_id, token)
        handle.on_manifest_ready(lambda result: save(result.to_record()))
        first = await handle.wait()
        ...
        await handle.dispose()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        source: ExternalSource,
        item_id: str,
        adapter: SourceAdapter,
        credential: str | None = None,
    ):
        self.orchestrator = orchestrator
        self._credential = credential
        self.source = source
        self.item_id = item_id
        self.adapter = adapter
        self.discovery = SourceDiscoveryService(adapter)
        self.disposed = False
        self.stream_id: str | None = None
        self._callbacks: list[ManifestCallback] = []
        self._results: list[SyncResult] = []
        self._first_result = asyncio.Event()
        self._urns: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"SyncHandle(source={self.source}, item_id={self.item_id!r}, disposed={self.disposed})"

    @property
    def results(self) -> list[SyncResult]:
        return list(self._results)

    @property
    def latest(self) -> SyncResult | None:
        return self._results[-1] if self._results else None

    @property
    def manifest(self) -> Manifest | None:
        for result in reversed(self._results):
            if result.ok:
                return result.manifest
        return None

    def on_manifest_ready(self, callback: ManifestCallback) -> None:
        """
        Call ``callback(result)`` for every succeeded sync pass.

        If a manifest is already ready, the callback also fires right away
        with the latest succeeded result.
        """
        self._callbacks.append(callback)
        for result in reversed(self._results):
            if result.ok:
                self._spawn(self._invoke(callback, result))
                break

    async def wait(self) -> SyncResult | None:
        """First result of the session (None if disposed before one arrived)."""
        await self._first_result.wait()
        return self._results[0] if self._results else None

    async def dispose(self) -> DisposeOutcome | None:
        """
        End the session: detach from the subscription and cancel the
        unfinished translation jobs no other open session is waiting on.
        Idempotent.

        In-flight network calls complete; their results are discarded.
        """
        if self.disposed:
            return None
        self.disposed = True
        self.orchestrator._release(self)

        outcome = None
        if self.stream_id is not None:
            outcome = await self.orchestrator.subscriptions.dispose(
                self.source, self.stream_id, handler=self.on_new_version
            )
        self.orchestrator._forget(self)
        self._first_result.set()
        logger.info(f"Sync of {self.item_id} on {self.source} disposed")
        return outcome

    async def on_new_version(self, event: NewVersionEvent) -> None:
        """Subscription handler: re-enter the flow for a new version of this item."""
        if self.disposed:
            return
        item_id = self.adapter.item_id_for_event(event.stream_id, event.item_id) if event.item_id else self.item_id
        if item_id != self.item_id or not event.version.is_published:
            return
        logger.info(f"Version {event.version.id} published for {self.item_id}, re-syncing")
        self._spawn(self.orchestrator._run(self, event.version))

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _invoke(self, callback: ManifestCallback, result: SyncResult) -> None:
        try:
            await _maybe_await(callback(result))
        except Exception:
            logger.exception(f"Manifest callback for {self.item_id} failed")

    def _publish(self, result: SyncResult) -> None:
        self._results.append(result)
        self._first_result.set()
        if result.ok:
            for callback in list(self._callbacks):
                self._spawn(self._invoke(callback, result))


class SyncOrchestrator:
    """
    Composes discovery, translation, runtime loading and subscriptions.

    Args:
        settings: Engine settings (defaults apply when omitted)
        tracker: Translation tracker shared by all sessions
        loader: Runtime loader
        subscriptions: Subscription registry shared by all sessions
        geometry_consumer: Optional ``(manifest, runtime)`` callable, sync or async
        retry_manager: Retry loop for idempotent discovery reads
        adapter_factory: ``(source, credential) -> SourceAdapter``
        transport_factory: ``(source, adapter, credential) -> SubscriptionTransport``
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        tracker: DerivativeTranslationTracker | None = None,
        loader: BinaryRuntimeLoader | None = None,
        subscriptions: RealtimeSubscriptionManager | None = None,
        geometry_consumer: GeometryConsumer | None = None,
        retry_manager: RetryManager | None = None,
        adapter_factory: AdapterFactory | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        self.settings = settings or Settings()
        self.tracker = tracker or DerivativeTranslationTracker(self.settings.translation)
        self.loader = loader or BinaryRuntimeLoader(self.settings.runtime)
        self.subscriptions = subscriptions or RealtimeSubscriptionManager()
        self.geometry_consumer = geometry_consumer
        self.retry = retry_manager or RetryManager()
        discovery = self.settings.discovery
        self.discovery_policy = discovery_policy(discovery.max_attempts, discovery.initial_delay, discovery.max_delay)
        self._adapter_factory = adapter_factory or self.default_adapter
        self._transport_factory = transport_factory or self.default_transport
        self._handles: list[SyncHandle] = []
        # urn -> open sessions waiting on its shared translation job
        self._holders: dict[str, set[SyncHandle]] = {}

    def source_for(self, kind: SourceKind | str, credential_ref: str = "") -> ExternalSource:
        """ExternalSource for ``kind`` at its configured base URL."""
        return ExternalSource(kind=kind, base_url=self.settings.source(kind).base_url, credential_ref=credential_ref)

    def default_adapter(self, source: ExternalSource, credential: str | None) -> SourceAdapter:
        client = TokenScopedSourceClient(
            source.base_url, credential, timeout=self.settings.source(source.kind).timeout_s
        )
        return adapter_for(source.kind, client)

    def default_transport(
        self, source: ExternalSource, adapter: SourceAdapter, credential: str | None
    ) -> SubscriptionTransport:
        subscriptions = self.settings.subscriptions
        if source.kind == SourceKind.COLLAB and subscriptions.use_websocket:
            return GraphQLWebSocketTransport(source.base_url, credential or "")
        return VersionPollingTransport(adapter, interval_s=subscriptions.poll_interval_s)

    @property
    def handles(self) -> list[SyncHandle]:
        return list(self._handles)

    async def begin_sync(self, source: ExternalSource, item_id: str, credential: str | None) -> SyncHandle:
        """
        Start syncing ``item_id`` and return its handle immediately.

        The flow runs in the background; failures arrive as SyncResults
        (``handle.wait()``), never as exceptions from this call.
        """
        adapter = self._adapter_factory(source, credential)
        handle = SyncHandle(self, source, item_id, adapter, credential)
        self._handles.append(handle)
        logger.info(f"Beginning sync of {item_id} on {source}")
        handle._spawn(self._run(handle, None))
        return handle

    async def sync_once(self, source: ExternalSource, item_id: str, credential: str | None) -> SyncResult | None:
        """Run one pass and return its result, leaving the session open."""
        handle = await self.begin_sync(source, item_id, credential)
        return await handle.wait()

    async def close(self) -> None:
        """Dispose every open session."""
        for handle in list(self._handles):
            await handle.dispose()

    def _forget(self, handle: SyncHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    def _hold(self, handle: SyncHandle, urn: str) -> None:
        handle._urns.add(urn)
        self._holders.setdefault(urn, set()).add(handle)

    def _release(self, handle: SyncHandle) -> None:
        for urn in handle._urns:
            holders = self._holders.get(urn)
            if holders is None:
                continue
            holders.discard(handle)
            if holders:
                logger.debug(f"Translation of {urn} kept for {len(holders)} other session(s)")
                continue
            del self._holders[urn]
            self.tracker.cancel(urn, reason="sync disposed")

    async def _run(self, handle: SyncHandle, version: Version | None) -> None:
        try:
            result = await self._sync(handle, version)
        except Exception as e:
            logger.exception(f"Sync of {handle.item_id} crashed")
            result = SyncResult(
                status=SyncStatus.ERROR,
                item_id=handle.item_id,
                urn=version.urn if version else None,
                version_id=version.id if version else None,
                error=e,
            )
        if result is not None and not handle.disposed:
            handle._publish(result)

    async def _sync(self, handle: SyncHandle, version: Version | None) -> SyncResult | None:
        item_id = handle.item_id
        try:
            if version is None:
                version = await self.retry.execute(
                    handle.discovery.latest_version,
                    item_id,
                    policy=self.discovery_policy,
                    operation=f"latest version of {item_id}",
                )
            if handle.disposed:
                return None

            self._hold(handle, version.urn)
            job = await self.tracker.submit(version.urn, handle.adapter, item_id=item_id)
            await job.wait()
        except Exception as e:
            if isinstance(e, BimSyncError):
                logger.warning(f"Sync of {item_id} failed: {e}")
            else:
                logger.exception(f"Sync of {item_id} crashed")
            return SyncResult(
                status=SyncStatus.ERROR,
                item_id=item_id,
                urn=version.urn if version else None,
                version_id=version.id if version else None,
                error=e,
            )

        if handle.disposed or job.state == JobState.CANCELLED:
            return None

        result = self._result_for(item_id, version, job)
        if result.ok:
            await self._consume(result)

        result.subscribed = await self._ensure_subscribed(handle)
        return result

    def _result_for(self, item_id: str, version: Version, job: TranslationJob) -> SyncResult:
        if job.state == JobState.SUCCEEDED:
            status = SyncStatus.SUCCEEDED
        elif job.state == JobState.TIMED_OUT:
            status = SyncStatus.TIMED_OUT
        elif isinstance(job.error, TranslationFailure):
            status = SyncStatus.FAILED
        else:
            status = SyncStatus.ERROR
        return SyncResult(
            status=status,
            item_id=item_id,
            urn=job.version_urn,
            version_id=version.id,
            manifest=job.manifest,
            job_id=job.job_id,
            attempts=job.attempts,
            error=job.error,
        )

    async def _consume(self, result: SyncResult) -> None:
        try:
            runtime = await self.loader.load()
        except RuntimeLoadError as e:
            logger.warning(f"Geometry parsing disabled for {result.urn}: {e}")
            result.runtime_error = e
            return

        if self.geometry_consumer is None:
            return
        try:
            await _maybe_await(self.geometry_consumer(result.manifest, runtime))
        except Exception as e:
            logger.exception(f"Geometry consumer failed for {result.urn}")
            result.consumer_error = e

    async def _ensure_subscribed(self, handle: SyncHandle) -> bool:
        if handle.stream_id is not None:
            return True
        if handle.disposed:
            return False

        transport = self._transport_factory(handle.source, handle.adapter, handle._credential)
        if isinstance(transport, VersionPollingTransport):
            stream_id = handle.item_id
        else:
            stream_id = handle.adapter.stream_id_for(handle.item_id)
        try:
            await self.subscriptions.subscribe(handle.source, stream_id, handle.on_new_version, transport)
        except SubscriptionError as e:
            logger.warning(f"Could not subscribe to new versions of {handle.item_id}: {e}")
            return False
        if handle.disposed:
            await self.subscriptions.dispose(handle.source, stream_id, handler=handle.on_new_version)
            return False
        handle.stream_id = stream_id
        return True
