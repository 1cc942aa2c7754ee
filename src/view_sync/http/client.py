"""Async HTTP client with ETag memoization, retries and per-request timeout."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import httpx

from view_sync.errors import (
    ClientError,
    NetworkError,
    NetworkTimeout,
    ParseError,
    RetryableError,
    ViewSyncError,
    error_for_status,
)

logger = logging.getLogger(__name__)

HTTP_NOT_MODIFIED = 304
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 0.4
DEFAULT_BACKOFF_JITTER_SECONDS = 0.15
DEFAULT_RETRY_AFTER_MAX_SECONDS = 15.0
DEFAULT_USER_AGENT = "view-sync/0.1 (+https://github.com/)"

PayloadParser = Callable[[bytes], object]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class CachedResource:
    """Last 200 payload of a read endpoint together with its validator."""

    path: str
    etag: str
    payload: object


def parse_json_payload(content: bytes) -> object:
    """Decode a JSON body; an empty body decodes to None."""

    if not content.strip():
        return None
    return json.loads(content)


class ResilientClient:
    """HTTP client for the backing store.

    ``get`` issues conditional requests using the ETag remembered for each
    path and serves the memoized payload on ``304``. ``request`` is used for
    writes and non-cacheable reads. Both retry ``429``, ``5xx``, timeouts and
    transport failures with exponential backoff plus jitter; every other
    failure is raised immediately.
    """

    def __init__(  # noqa: PLR0913
        self,
        base_url: str,
        *,
        token: str | None = None,
        auth_reads: bool = False,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
        backoff_jitter_seconds: float = DEFAULT_BACKOFF_JITTER_SECONDS,
        retry_after_max_seconds: float = DEFAULT_RETRY_AFTER_MAX_SECONDS,
        parser: PayloadParser = parse_json_payload,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self.base_url = base_url.rstrip("/")
        self.token = token
        self.auth_reads = auth_reads
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_jitter_seconds = backoff_jitter_seconds
        self.retry_after_max_seconds = retry_after_max_seconds
        self._parser = parser
        self._sleep = sleep
        self._random = rng or random.Random()  # noqa: S311
        self._memo: dict[str, CachedResource] = {}

        base_headers = {"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json"}
        if headers:
            base_headers.update(headers)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers=base_headers,
            transport=transport,
            follow_redirects=True,
        )

    async def get(self, path: str) -> object:
        """Conditional GET returning the current payload for ``path``."""

        cached = self._memo.get(path)
        headers: dict[str, str] = {}
        if cached is not None:
            headers["If-None-Match"] = cached.etag

        response = await self._send(
            "GET",
            path,
            headers=headers,
            authenticated=self.auth_reads,
        )
        if response.status_code == HTTP_NOT_MODIFIED:
            if cached is None:
                raise ClientError(
                    message=f"GET {path} returned 304 without a cached payload",
                    code="unexpected_not_modified",
                    status_code=HTTP_NOT_MODIFIED,
                )
            logger.debug("GET %s not modified (etag=%s); serving memoized payload", path, cached.etag)
            return cached.payload

        payload = self._parse(response, path=path)
        etag = _normalize_header(response.headers.get("ETag"))
        if etag is None:
            self._memo.pop(path, None)
        else:
            self._memo[path] = CachedResource(path=path, etag=etag, payload=payload)
        return payload

    async def request(  # noqa: PLR0913
        self,
        method: str,
        path: str,
        *,
        body: object | None = None,
        params: dict[str, str] | None = None,
        invalidates: Iterable[str] = (),
        authenticated: bool = True,
    ) -> object:
        """Issue a write or non-cacheable read and return the parsed body.

        Memo entries named in ``invalidates`` are dropped once the call
        finishes, whether it succeeded or not: a failed write may still have
        reached the server.
        """

        try:
            response = await self._send(
                method.upper(),
                path,
                body=body,
                params=params,
                authenticated=authenticated,
            )
        finally:
            self.invalidate(*invalidates)
        return self._parse(response, path=path)

    def invalidate(self, *paths: str) -> None:
        for path in paths:
            if self._memo.pop(path, None) is not None:
                logger.debug("Invalidated memoized resource %s", path)

    def cached(self, path: str) -> CachedResource | None:
        return self._memo.get(path)

    def clear_memo(self) -> None:
        self._memo.clear()

    def compute_backoff(self, attempt: int, *, retry_after: float | None = None) -> float:
        """Delay before retrying after failed attempt number ``attempt`` (1-based)."""

        delay = self.backoff_base_seconds * (2 ** max(attempt - 1, 0))
        if self.backoff_jitter_seconds > 0:
            delay += self._random.uniform(0, self.backoff_jitter_seconds)
        if retry_after is not None:
            delay = max(delay, min(max(retry_after, 0.0), self.retry_after_max_seconds))
        return delay

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def _send(  # noqa: PLR0913
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        body: object | None = None,
        params: dict[str, str] | None = None,
        authenticated: bool,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        if authenticated and self.token:
            request_headers["Authorization"] = f"Bearer {self.token}"

        attempt = 0
        while True:
            attempt += 1
            cause: BaseException | None = None
            try:
                response = await asyncio.wait_for(
                    self._client.request(
                        method,
                        path,
                        headers=request_headers,
                        json=body,
                        params=params,
                    ),
                    timeout=self.timeout_seconds,
                )
            except (httpx.TimeoutException, TimeoutError) as exc:
                cause = exc
                error: ViewSyncError = NetworkTimeout(
                    message=f"{method} {path} timed out after {self.timeout_seconds:g}s",
                    code="timeout",
                )
            except httpx.TransportError as exc:
                cause = exc
                error = NetworkError(
                    message=f"{method} {path} transport error: {exc}",
                    code="transport",
                )
            except httpx.HTTPError as exc:
                cause = exc
                error = ClientError(
                    message=f"{method} {path} failed: {exc}",
                    code="http_error",
                )
            else:
                if response.is_success or response.status_code == HTTP_NOT_MODIFIED:
                    return response
                error = error_for_status(
                    response.status_code,
                    message=_error_message(response, method=method, path=path),
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                )

            if not isinstance(error, RetryableError):
                logger.warning("%s %s failed permanently: %s", method, path, error)
                raise error from cause
            if attempt >= self.max_attempts:
                logger.warning(
                    "%s %s failed after %d attempt(s): %s",
                    method,
                    path,
                    attempt,
                    error,
                )
                raise error from cause

            delay = self.compute_backoff(attempt, retry_after=error.retry_after)
            logger.warning(
                "%s %s attempt %d/%d failed (%s); retrying in %.2fs",
                method,
                path,
                attempt,
                self.max_attempts,
                error.code,
                delay,
            )
            await self._sleep(delay)

    def _parse(self, response: httpx.Response, *, path: str) -> object:
        try:
            return self._parser(response.content)
        except (ValueError, TypeError) as error:
            raise ParseError(
                message=f"Invalid payload from {path}: {error}",
                code="invalid_payload",
                status_code=response.status_code,
            ) from error


def parse_retry_after(value: str | None) -> float | None:
    """Parse ``Retry-After`` as delta-seconds or an HTTP date."""

    normalized = _normalize_header(value)
    if normalized is None:
        return None
    try:
        return max(0.0, float(normalized))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(normalized)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max(0.0, (retry_at - datetime.now(tz=UTC)).total_seconds())


def _error_message(response: httpx.Response, *, method: str, path: str) -> str:
    message = f"{method} {path} failed with HTTP {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        return message
    if isinstance(data, dict):
        detail = data.get("message") or data.get("error")
        if isinstance(detail, dict):
            detail = detail.get("message")
        if detail:
            return f"{message}: {detail}"
    return message


def _normalize_header(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None
