"""
Upstream "new version published" transports.

A transport opens one upstream registration for a stream and calls
``on_event`` for every version published on it. The subscription manager owns
de-duplication, handler fan-out and registry bookkeeping; transports only move
events.

Implementations provided:
- VersionPollingTransport: polls the newest published version (sources without push)
- GraphQLWebSocketTransport: ``graphql-transport-ws`` subscription (collaboration service)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from bimsync.exceptions import BimSyncError, SubscriptionError
from bimsync.sources.adapters.base import SourceAdapter
from bimsync.sources.adapters.collab import to_version
from bimsync.sources.types import NewVersionEvent
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.subscriptions.transports")

EventCallback = Callable[[NewVersionEvent], Awaitable[None]]


class SubscriptionTransport(Protocol):
    async def open(self, stream_id: str, on_event: EventCallback) -> Any:
        """Register upstream; return a handle for ``close``. Raises SubscriptionError."""
        ...

    async def close(self, handle: Any) -> None:
        """Unregister upstream. Raises SubscriptionError if upstream could not be told."""
        ...


# --- Polling -----------------------------------------------------------------


@dataclass
class PollingHandle:
    stream_id: str
    last_version_id: str | None
    task: asyncio.Task | None = None


class VersionPollingTransport:
    """
    Emulates push by polling the newest published version of an item.

    The stream id is the item id. The version current at ``open`` is the
    baseline; an event fires each time the newest version id changes.
    Poll failures are logged and polling continues.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        *,
        interval_s: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.adapter = adapter
        self.interval_s = interval_s
        self._sleep = sleep

    async def open(self, stream_id: str, on_event: EventCallback) -> PollingHandle:
        try:
            baseline = await self.adapter.fetch_latest_version(stream_id)
        except BimSyncError as e:
            raise SubscriptionError(
                f"Could not read baseline version for '{stream_id}': {e}",
                source=self.adapter.kind,
                stream_id=stream_id,
            ) from e

        handle = PollingHandle(stream_id=stream_id, last_version_id=baseline.id if baseline else None)
        handle.task = asyncio.create_task(self._poll(handle, on_event), name=f"version-poll:{stream_id}")
        logger.debug(f"Polling '{stream_id}' every {self.interval_s}s (baseline {handle.last_version_id})")
        return handle

    async def close(self, handle: PollingHandle) -> None:
        if handle.task is None or handle.task.done():
            return
        handle.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await handle.task

    async def _poll(self, handle: PollingHandle, on_event: EventCallback) -> None:
        while True:
            await self._sleep(self.interval_s)
            try:
                latest = await self.adapter.fetch_latest_version(handle.stream_id)
            except BimSyncError as e:
                logger.warning(f"Version poll for '{handle.stream_id}' failed: {e}")
                continue
            except Exception:
                logger.exception(f"Version poll for '{handle.stream_id}' crashed")
                continue
            if latest is None or latest.id == handle.last_version_id:
                continue
            handle.last_version_id = latest.id
            await on_event(NewVersionEvent(stream_id=handle.stream_id, version=latest))


# --- GraphQL websocket -------------------------------------------------------

PROTOCOL = "graphql-transport-ws"

VERSIONS_SUBSCRIPTION = """
subscription ProjectVersionsUpdated($id: String!) {
  projectVersionsUpdated(id: $id) {
    id
    modelId
    type
    version { id message referencedObject createdAt }
  }
}
"""


@dataclass
class WebSocketHandle:
    stream_id: str
    subscription_id: str
    ws: Any
    session: aiohttp.ClientSession | None = None
    reader: asyncio.Task | None = None


class GraphQLWebSocketTransport:
    """
    Push subscription over the ``graphql-transport-ws`` protocol.

    The stream id is the project id; ``projectVersionsUpdated`` events of
    type CREATED become NewVersionEvents whose ``item_id`` is the upstream
    model id.

    Args:
        base_url: Source base URL (http(s); mapped to ws(s))
        credential: Bearer token sent in ``connection_init``
        connect: Optional ``async (url) -> websocket`` used instead of aiohttp
        ack_timeout_s: How long to wait for ``connection_ack``
    """

    def __init__(
        self,
        base_url: str,
        credential: str,
        *,
        connect: Callable[[str], Awaitable[Any]] | None = None,
        ack_timeout_s: float = 10.0,
    ):
        self.url = ws_url(base_url)
        self._credential = credential
        self._connect = connect
        self.ack_timeout_s = ack_timeout_s

    def __repr__(self) -> str:
        return f"GraphQLWebSocketTransport(url={self.url!r}, credential=<redacted>)"

    async def open(self, stream_id: str, on_event: EventCallback) -> WebSocketHandle:
        session = None
        try:
            if self._connect is not None:
                ws = await self._connect(self.url)
            else:
                session = aiohttp.ClientSession()
                ws = await session.ws_connect(self.url, protocols=(PROTOCOL,), heartbeat=30.0)

            await ws.send_json({"type": "connection_init", "payload": {"Authorization": f"Bearer {self._credential}"}})
            ack = await ws.receive_json(timeout=self.ack_timeout_s)
            if ack.get("type") != "connection_ack":
                raise SubscriptionError(
                    f"Subscription handshake rejected: {ack.get('payload') or ack.get('type')}",
                    source=self.url,
                    stream_id=stream_id,
                )

            subscription_id = str(uuid.uuid4())
            await ws.send_json(
                {
                    "id": subscription_id,
                    "type": "subscribe",
                    "payload": {"query": VERSIONS_SUBSCRIPTION, "variables": {"id": stream_id}},
                }
            )
        except SubscriptionError:
            if session is not None:
                await session.close()
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, TypeError, ValueError) as e:
            if session is not None:
                await session.close()
            raise SubscriptionError(
                f"Could not open subscription for '{stream_id}': {e}", source=self.url, stream_id=stream_id
            ) from e

        handle = WebSocketHandle(stream_id=stream_id, subscription_id=subscription_id, ws=ws, session=session)
        handle.reader = asyncio.create_task(self._read(handle, on_event), name=f"graphql-ws:{stream_id}")
        return handle

    async def close(self, handle: WebSocketHandle) -> None:
        try:
            if not handle.ws.closed:
                await handle.ws.send_json({"id": handle.subscription_id, "type": "complete"})
                await handle.ws.close()
        except (aiohttp.ClientError, OSError) as e:
            raise SubscriptionError(
                f"Upstream unsubscribe failed for '{handle.stream_id}': {e}",
                source=self.url,
                stream_id=handle.stream_id,
            ) from e
        finally:
            if handle.reader is not None and not handle.reader.done():
                handle.reader.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await handle.reader
            if handle.session is not None:
                await handle.session.close()

    async def _read(self, handle: WebSocketHandle, on_event: EventCallback) -> None:
        async for message in handle.ws:
            if message.type != aiohttp.WSMsgType.TEXT:
                if message.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
                continue
            try:
                data = json.loads(message.data)
            except ValueError:
                logger.warning(f"Ignoring malformed subscription frame on '{handle.stream_id}'")
                continue

            kind = data.get("type")
            if kind == "ping":
                await handle.ws.send_json({"type": "pong"})
            elif kind == "next" and data.get("id") == handle.subscription_id:
                event = to_event(handle.stream_id, data.get("payload") or {})
                if event is not None:
                    await on_event(event)
            elif kind == "error":
                logger.warning(f"Subscription error on '{handle.stream_id}': {data.get('payload')}")
            elif kind == "complete":
                break
        logger.info(f"Subscription stream for '{handle.stream_id}' ended")


def ws_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return f"{base}/graphql"


def to_event(stream_id: str, payload: dict[str, Any]) -> NewVersionEvent | None:
    """Map a ``next`` payload to an event; only CREATED versions count."""
    update = (payload.get("data") or {}).get("projectVersionsUpdated") or {}
    version = update.get("version")
    if update.get("type") != "CREATED" or not version:
        return None
    return NewVersionEvent(
        stream_id=stream_id,
        version=to_version(stream_id, version),
        item_id=update.get("modelId"),
    )
