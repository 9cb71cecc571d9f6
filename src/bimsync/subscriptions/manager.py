"""
Realtime subscription registry.

At most one live Subscription exists per (source, stream id). Concurrent
``subscribe`` calls for the same key share one in-flight open, so exactly one
upstream registration is made; every caller's handler is attached to it.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from bimsync.sources.types import ExternalSource, NewVersionEvent
from bimsync.subscriptions.transports import SubscriptionTransport
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.subscriptions.manager")

SEEN_VERSIONS_LIMIT = 256

VersionHandler = Callable[[NewVersionEvent], Awaitable[None] | None]


class DisposeOutcome(StrEnum):
    """Result of ``RealtimeSubscriptionManager.dispose``."""

    UNSUBSCRIBED = "unsubscribed"
    ALREADY_INACTIVE = "already_inactive"
    UPSTREAM_FAILED = "upstream_failed"  # registry entry still removed
    HANDLER_REMOVED = "handler_removed"  # other handlers keep the subscription alive


@dataclass(eq=False)
class Subscription:
    source: str
    stream_id: str
    transport: SubscriptionTransport
    active: bool = False
    handlers: list[VersionHandler] = field(default_factory=list)
    upstream: Any = None
    opened_at: datetime | None = None
    seen_versions: deque[str] = field(default_factory=lambda: deque(maxlen=SEEN_VERSIONS_LIMIT))
    last_error: Exception | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.stream_id)

    def add_handler(self, handler: VersionHandler) -> None:
        if handler not in self.handlers:
            self.handlers.append(handler)

    def remove_handler(self, handler: VersionHandler) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)


class RealtimeSubscriptionManager:
    """
    Opens and tears down upstream "new version" subscriptions.

    The manager only dispatches events; re-running translation for a new
    version is the orchestrator's job.

    Example:
        manager = RealtimeSubscriptionManager()
        sub = await manager.subscribe(source, project_id, on_new_version, transport)
        ...
        outcome = await manager.dispose(source, project_id)
    """

    def __init__(self):
        self._registry: dict[tuple[str, str], Subscription] = {}
        self._opening: dict[tuple[str, str], asyncio.Task] = {}

    def get(self, source: ExternalSource | str, stream_id: str) -> Subscription | None:
        return self._registry.get((str(source), stream_id))

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._registry.values())

    async def subscribe(
        self,
        source: ExternalSource | str,
        stream_id: str,
        on_new_version: VersionHandler,
        transport: SubscriptionTransport,
    ) -> Subscription:
        """
        Subscribe ``on_new_version`` to new versions on ``stream_id``.

        Returns the existing subscription if one is active for the key. A
        cancelled caller stops waiting and detaches its handler; the open
        itself carries on for the other callers.

        Raises:
            SubscriptionError: If upstream registration fails
        """
        key = (str(source), stream_id)

        existing = self._registry.get(key)
        if existing is not None and existing.active:
            existing.add_handler(on_new_version)
            return existing

        pending = self._opening.get(key)
        if pending is None:
            subscription = Subscription(source=key[0], stream_id=stream_id, transport=transport)
            subscription.add_handler(on_new_version)
            pending = asyncio.ensure_future(self._open(subscription))
            self._opening[key] = pending
            pending.add_done_callback(lambda finished: self._open_done(key, finished))
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                subscription.remove_handler(on_new_version)
                raise

        subscription = await asyncio.shield(pending)
        subscription.add_handler(on_new_version)
        return subscription

    async def _open(self, subscription: Subscription) -> Subscription:
        source, stream_id = subscription.key
        try:
            subscription.upstream = await subscription.transport.open(
                stream_id, lambda event: self._dispatch(subscription, event)
            )
        except Exception as e:
            logger.warning(f"Subscription to {source} stream '{stream_id}' failed: {e}")
            raise
        subscription.active = True
        subscription.opened_at = datetime.now(UTC)
        self._registry[subscription.key] = subscription
        logger.info(f"Subscribed to {source} stream '{stream_id}'")
        return subscription

    def _open_done(self, key: tuple[str, str], task: asyncio.Task) -> None:
        if self._opening.get(key) is task:
            del self._opening[key]
        if not task.cancelled():
            # Retrieved here so a failure nobody awaited isn't reported at GC
            task.exception()

    async def dispose(
        self,
        source: ExternalSource | str,
        stream_id: str,
        handler: VersionHandler | None = None,
    ) -> DisposeOutcome:
        """
        Unsubscribe from ``stream_id``.

        With ``handler``, only that handler is detached; upstream is closed
        once no handlers remain. Disposing an inactive subscription is a
        no-op. A failed upstream close still removes the registry entry and
        is reported as UPSTREAM_FAILED.
        """
        key = (str(source), stream_id)
        subscription = self._registry.get(key)
        if subscription is None or not subscription.active:
            return DisposeOutcome.ALREADY_INACTIVE

        if handler is not None:
            subscription.remove_handler(handler)
            if subscription.handlers:
                return DisposeOutcome.HANDLER_REMOVED

        subscription.active = False
        del self._registry[key]
        try:
            await subscription.transport.close(subscription.upstream)
        except Exception as e:
            subscription.last_error = e
            logger.warning(f"Upstream unsubscribe from {key[0]} stream '{stream_id}' failed: {e}")
            return DisposeOutcome.UPSTREAM_FAILED

        logger.info(f"Unsubscribed from {key[0]} stream '{stream_id}'")
        return DisposeOutcome.UNSUBSCRIBED

    async def dispose_all(self) -> dict[tuple[str, str], DisposeOutcome]:
        outcomes = {}
        for source, stream_id in list(self._registry):
            outcomes[(source, stream_id)] = await self.dispose(source, stream_id)
        return outcomes

    async def _dispatch(self, subscription: Subscription, event: NewVersionEvent) -> None:
        if not subscription.active:
            return
        version_id = event.version.id
        if version_id in subscription.seen_versions:
            logger.debug(f"Duplicate event for version {version_id} on '{subscription.stream_id}'")
            return
        subscription.seen_versions.append(version_id)

        logger.info(f"New version {version_id} on {subscription.source} stream '{subscription.stream_id}'")
        for handler in list(subscription.handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Handler for stream '{subscription.stream_id}' failed on version {version_id}")
