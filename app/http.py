"""Resilient JSON Web API client shared by every remote adapter.

Features:
  - Per-request auth headers from an injected provider
  - 429 Retry-After with jitter
  - Exponential backoff on 5xx and timeouts
  - Limited attempts, then a typed error
  - Minimal logging
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Protocol

import httpx

from core.errors import DecodeFailure, NetworkFailure, NotFound, Unauthorized

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_MAX_ATTEMPTS = 3
_BACKOFF_BASE = 0.5  # seconds
_BACKOFF_CAP = 30.0  # seconds
_JITTER_MAX = 0.5  # seconds

# Methods resent after a timeout or 5xx. Others only retry on 429.
_IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


class HeaderProvider(Protocol):
    async def authorization_headers(self) -> dict[str, str]: ...


Sleep = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ApiClient:
    """Authenticated requests against one service's API base URL.

    Parameters
    ----------
    http : httpx.AsyncClient
        Shared transport; owned by the caller.
    base_url : str
        Prefix for relative paths. Absolute URLs (``next`` links) are used as is.
    service : str
        Service name carried on every raised error.
    auth : HeaderProvider | None
        Asked for headers before every attempt, so token refresh is transparent.
    max_attempts : int
        Total tries for retryable failures: 429 for every method, plus 5xx
        and timeouts for idempotent ones.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        *,
        service: str,
        auth: HeaderProvider | None = None,
        max_attempts: int = _MAX_ATTEMPTS,
        sleep: Sleep = asyncio.sleep,
    ):
        self._http = http
        self._base_url = base_url.rstrip("/")
        self.service = service
        self._auth = auth
        self._max_attempts = max(1, max_attempts)
        self._sleep = sleep

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        check: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying transient failures.

        POST and PATCH are never resent after a timeout or 5xx.

        With ``check=True`` a final status >= 400 raises; with ``check=False``
        the final response is returned for the caller to interpret.
        Transport failures always raise ``NetworkFailure``.
        """
        url = self._url(path)
        extra_headers = kwargs.pop("headers", {})
        resp: httpx.Response | None = None
        idempotent = method.upper() in _IDEMPOTENT_METHODS

        for attempt in range(self._max_attempts):
            headers = dict(extra_headers)
            if self._auth is not None:
                headers.update(await self._auth.authorization_headers())

            try:
                resp = await self._http.request(method, url, headers=headers, **kwargs)
            except httpx.TimeoutException as exc:
                logger.warning("Timeout on attempt %d for %s %s", attempt + 1, method, url)
                if idempotent and attempt + 1 < self._max_attempts:
                    await self._backoff_sleep(attempt)
                    continue
                raise NetworkFailure(f"Timed out: {method} {url}", service=self.service) from exc
            except httpx.HTTPError as exc:
                raise NetworkFailure(f"{type(exc).__name__}: {exc}", service=self.service) from exc

            # ── 429 → Retry-After ───────────────────────────────────
            if resp.status_code == 429 and attempt + 1 < self._max_attempts:
                try:
                    retry_after = float(resp.headers.get("Retry-After", "1"))
                except ValueError:
                    retry_after = 1.0
                wait = min(retry_after + random.uniform(0, _JITTER_MAX), _BACKOFF_CAP)
                logger.warning("429 on %s %s, waiting %.1fs", method, url, wait)
                await self._sleep(wait)
                continue

            # ── 5xx → exponential backoff ───────────────────────────
            if resp.status_code >= 500 and idempotent and attempt + 1 < self._max_attempts:
                logger.warning(
                    "Server error %d on %s %s (attempt %d)", resp.status_code, method, url, attempt + 1
                )
                await self._backoff_sleep(attempt)
                continue

            break

        assert resp is not None
        if check:
            self.raise_for_status(resp)
        return resp

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        resp = await self.request("GET", path, **kwargs)
        return self.json(resp)

    def raise_for_status(self, resp: httpx.Response) -> None:
        """Map a non-success response onto the error taxonomy."""
        status = resp.status_code
        if status < 400:
            return
        detail = _error_detail(resp)
        if status in (401, 403):
            raise Unauthorized(detail, service=self.service, status_code=status)
        if status == 404:
            raise NotFound(detail, service=self.service, status_code=status)
        raise NetworkFailure(detail, service=self.service, status_code=status)

    def json(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise DecodeFailure("Response body is not JSON", service=self.service) from exc

    async def _backoff_sleep(self, attempt: int) -> None:
        """Exponential backoff with jitter, capped at ``_BACKOFF_CAP``."""
        delay = min(_BACKOFF_BASE * (2 ** attempt) + random.uniform(0, _JITTER_MAX), _BACKOFF_CAP)
        logger.debug("Backoff sleep %.2fs (attempt %d)", delay, attempt + 1)
        await self._sleep(delay)


def _error_detail(resp: httpx.Response) -> str:
    """Best-effort message from a ``{"error": {"message": ...}}`` style body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return body.get("error_description") or err
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("detail") or errors[0].get("title") or errors[0])
    return resp.reason_phrase or f"HTTP {resp.status_code}"
