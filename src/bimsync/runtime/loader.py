"""
Geometry parsing runtime loader.

The runtime (a WebAssembly IFC parser) is fetched once per process from a
well-known static path and cached. Concurrent ``load()`` calls made before the
first fetch completes all await that one fetch. Empty or malformed payloads
count as failed fetches and are never cached; a failed load invalidates the
cache entry so the next call re-fetches.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import aiohttp

from bimsync.config.settings import RuntimeSettings
from bimsync.core.retry import RetryManager, RetryPolicy
from bimsync.exceptions import RuntimeLoadError, SourceError, TransientNetworkError
from bimsync.sources.client import raise_for_status
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.runtime.loader")


@dataclass(frozen=True)
class RuntimeBinary:
    bytes: bytes = field(repr=False)
    fetched_at: datetime
    url: str = ""

    @property
    def size(self) -> int:
        return len(self.bytes)


class RuntimeBinaryCache:
    """
    Runtime binaries by URL, plus the fetch currently in flight for each.

    First successful fetch wins; readers never see a partial or failed
    payload. ``RUNTIME_CACHE`` is the process-wide instance.
    """

    def __init__(self):
        self._entries: dict[str, RuntimeBinary] = {}
        self._in_flight: dict[str, asyncio.Task] = {}

    def get(self, url: str) -> RuntimeBinary | None:
        return self._entries.get(url)

    def store(self, binary: RuntimeBinary) -> RuntimeBinary:
        return self._entries.setdefault(binary.url, binary)

    def invalidate(self, url: str) -> None:
        """Mark the entry for ``url`` poisoned; the next load re-fetches."""
        self._entries.pop(url, None)

    def pending(self, url: str) -> asyncio.Task | None:
        return self._in_flight.get(url)

    def track(self, url: str, task: asyncio.Task) -> None:
        self._in_flight[url] = task

    def untrack(self, url: str, task: asyncio.Task) -> None:
        if self._in_flight.get(url) is task:
            del self._in_flight[url]

    def reset(self) -> None:
        self._entries.clear()
        self._in_flight.clear()


RUNTIME_CACHE = RuntimeBinaryCache()


class BinaryRuntimeLoader:
    """
    Loads the parsing runtime, retrying transient failures with linear backoff.

    Example:
        loader = BinaryRuntimeLoader(settings.runtime)
        runtime = await loader.load()

    Raises RuntimeLoadError once ``settings.max_attempts`` fetches failed.
    That disables geometry parsing only; callers keep their discovery and
    translation results.
    """

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        *,
        cache: RuntimeBinaryCache | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or RuntimeSettings()
        self.cache = cache if cache is not None else RUNTIME_CACHE
        self._retry = RetryManager(sleep=sleep)
        self.policy = RetryPolicy(
            max_attempts=self.settings.max_attempts - 1,
            initial_delay=self.settings.retry_delay_s,
            max_delay=self.settings.retry_delay_s * self.settings.max_attempts,
            linear=True,
            jitter=False,
            retryable_exceptions=(TransientNetworkError, RuntimeLoadError),
        )

    @property
    def url(self) -> str:
        return self.settings.url

    async def load(self) -> RuntimeBinary:
        """
        Return the cached runtime, fetching it first if needed.

        Concurrent callers share one fetch task. Cancelling a caller only
        stops its wait; the fetch carries on for everyone else.
        """
        url = self.url
        cached = self.cache.get(url)
        if cached is not None:
            return cached

        task = self.cache.pending(url)
        if task is None:
            task = asyncio.ensure_future(self._load(url))
            self.cache.track(url, task)
            task.add_done_callback(lambda finished: self._fetch_done(url, finished))
        return await asyncio.shield(task)

    async def _load(self, url: str) -> RuntimeBinary:
        try:
            binary = self.cache.store(await self._fetch_with_retry())
        except Exception:
            self.cache.invalidate(url)
            raise
        logger.info(f"Loaded parsing runtime from {url} ({binary.size} bytes)")
        return binary

    def _fetch_done(self, url: str, task: asyncio.Task) -> None:
        self.cache.untrack(url, task)
        if not task.cancelled():
            # Retrieved here so a failure nobody awaited isn't reported at GC
            task.exception()

    async def _fetch_with_retry(self) -> RuntimeBinary:
        attempts = 0

        async def attempt() -> RuntimeBinary:
            nonlocal attempts
            attempts += 1
            return await self._fetch_once()

        try:
            return await self._retry.execute(attempt, policy=self.policy, operation=f"runtime fetch {self.url}")
        except RuntimeLoadError as e:
            logger.warning(f"Parsing runtime unavailable after {attempts} attempts: {e}")
            raise RuntimeLoadError(e.message, url=self.url, attempts=attempts) from e
        except SourceError as e:
            logger.warning(f"Parsing runtime unavailable after {attempts} attempts: {e}")
            raise RuntimeLoadError(f"Could not fetch parsing runtime: {e}", url=self.url, attempts=attempts) from e

    async def _fetch_once(self) -> RuntimeBinary:
        url = self.url
        start_time = time.monotonic()
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.settings.timeout_s)) as session:
                async with session.get(url) as response:
                    status = response.status
                    payload = await response.read()
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(f"GET {url} network error: {e}") from e

        logger.debug(f"GET {url} {status} {len(payload)} bytes {time.monotonic() - start_time:.2f}s")
        raise_for_status(status, payload.decode("utf-8", "replace")[:200] or None, method="GET", url=url)
        if status >= 300:
            raise RuntimeLoadError(f"GET {url} returned unexpected status {status}", url=url)

        if not payload:
            raise RuntimeLoadError("Parsing runtime payload is empty", url=url)
        magic = self.settings.magic
        if magic and not payload.startswith(magic):
            raise RuntimeLoadError(f"Parsing runtime payload does not start with {magic!r}", url=url)
        return RuntimeBinary(bytes=payload, fetched_at=datetime.now(UTC), url=url)
