"""
Token-scoped HTTP client for external model sources.

One client carries exactly one bearer credential for one source base URL.
It deliberately has no retry logic: only the caller knows whether an
operation is idempotent, so retries live in the translation tracker, the
runtime loader and the orchestrator's discovery reads.
"""

import asyncio
import time
from typing import Any

import aiohttp

from bimsync.exceptions import AuthError, NotFoundError, SourceError, TransientNetworkError
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.sources.client")

TRANSIENT_STATUSES = frozenset({408, 425, 429})


def upstream_message(body: Any) -> str | None:
    """Best-effort extraction of an error message from an upstream body."""
    if isinstance(body, dict):
        for key in ("developerMessage", "message", "reason", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return errors[0].get("message") or errors[0].get("detail")
    elif isinstance(body, str) and body:
        return body[:200]
    return None


def raise_for_status(status: int, body: Any, *, method: str, url: str) -> None:
    """
    Map an HTTP status onto the source error taxonomy.

    401/403 -> AuthError, 404 -> NotFoundError, 408/425/429/5xx ->
    TransientNetworkError. Anything else is left for the adapter to interpret.
    """
    if status < 400:
        return
    message = upstream_message(body)
    suffix = f": {message}" if message else ""
    if status in (401, 403):
        raise AuthError(f"{method} {url} rejected credential ({status}){suffix}", status=status)
    if status == 404:
        raise NotFoundError(f"{method} {url} not found{suffix}", status=status)
    if status in TRANSIENT_STATUSES or status >= 500:
        raise TransientNetworkError(f"{method} {url} failed with {status}{suffix}", status=status)


class TokenScopedSourceClient:
    """
    HTTP client bound to one source and one bearer credential.

    Usable per request (each call opens and closes its own session) or as an
    async context manager that shares one session across calls.

    Example:
        async with TokenScopedSourceClient("https://developer.api.autodesk.com", token) as client:
            status, body = await client.get("/project/v1/hubs")
    """

    def __init__(
        self,
        base_url: str,
        credential: str | None,
        *,
        timeout: float = 30.0,
        expires_at: float | None = None,
    ):
        """
        Args:
            base_url: Source base URL
            credential: Bearer token supplied by the caller
            timeout: Total request timeout in seconds
            expires_at: Optional epoch seconds after which the token is known expired
        """
        self.base_url = base_url.rstrip("/")
        self._credential = (credential or "").strip()
        self._expires_at = expires_at
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def __repr__(self) -> str:
        return f"TokenScopedSourceClient(base_url={self.base_url!r}, credential=<redacted>)"

    async def __aenter__(self) -> "TokenScopedSourceClient":
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def check_credential(self) -> None:
        """Raise AuthError without touching the network if the token is unusable."""
        if not self._credential:
            raise AuthError(f"No credential supplied for {self.base_url}")
        if self._expires_at is not None and self._expires_at <= time.time():
            raise AuthError(f"Credential for {self.base_url} has expired")

    @property
    def auth_headers(self) -> dict[str, str]:
        self.check_credential()
        return {"Authorization": f"Bearer {self._credential}"}

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get(self, path: str, query: dict[str, Any] | None = None) -> tuple[int, Any]:
        """GET ``path`` and return ``(status_code, body)``."""
        return await self._request("GET", path, params=query)

    async def post(self, path: str, json: Any = None, headers: dict[str, str] | None = None) -> tuple[int, Any]:
        """POST a JSON body to ``path`` and return ``(status_code, body)``."""
        return await self._request("POST", path, json=json, headers=headers)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, Any]:
        request_headers = {**self.auth_headers, **(headers or {})}
        url = self.url_for(path)

        if params:
            # aiohttp/yarl reject booleans in query strings
            params = {k: (str(v).lower() if isinstance(v, bool) else v) for k, v in params.items() if v is not None}

        owns_session = self._session is None or self._session.closed
        session = aiohttp.ClientSession(timeout=self.timeout) if owns_session else self._session
        start_time = time.monotonic()
        try:
            async with session.request(method, url, params=params, json=json, headers=request_headers) as response:
                status = response.status
                body = await self._read_body(response)
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError) as e:
            logger.warning(f"{method} {url} network error: {type(e).__name__}: {e}")
            raise TransientNetworkError(f"{method} {url} network error: {e}") from e
        finally:
            if owns_session:
                await session.close()

        duration = time.monotonic() - start_time
        log = logger.debug if status < 400 else logger.warning
        log(f"{method} {url} {status} {duration:.2f}s")

        raise_for_status(status, body, method=method, url=url)
        return status, body

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        if response.status == 204:
            return None
        if "json" in (response.content_type or ""):
            try:
                return await response.json()
            except (aiohttp.ContentTypeError, ValueError) as e:
                # Error statuses still map by status code
                if response.status >= 400:
                    return await response.text() or None
                raise SourceError(f"Malformed JSON body from {response.url}: {e}", status=response.status) from e
        text = await response.text()
        return text or None
