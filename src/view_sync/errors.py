"""Error taxonomy shared by the remote client, provider and synchronizer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ViewSyncError(Exception):
    """Base error for every failure raised by this package."""

    message: str
    code: str = "view_sync_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class RetryableError(ViewSyncError):
    """Failure that may succeed when the same request is issued again."""

    status_code: int | None = None
    retry_after: float | None = None


@dataclass(slots=True)
class NetworkError(RetryableError):
    """Transport-level failure before any HTTP status was received."""


@dataclass(slots=True)
class NetworkTimeout(NetworkError):
    """Request exceeded its per-request timeout and was aborted."""


@dataclass(slots=True)
class RateLimited(RetryableError):
    """Upstream answered 429 Too Many Requests."""


@dataclass(slots=True)
class ServerError(RetryableError):
    """Upstream answered with a 5xx status."""


@dataclass(slots=True)
class NonRetryableError(ViewSyncError):
    """Failure that must surface to the caller immediately."""

    status_code: int | None = None


@dataclass(slots=True)
class ClientError(NonRetryableError):
    """Upstream rejected the request with a 4xx status other than 429."""


@dataclass(slots=True)
class ParseError(NonRetryableError):
    """Response body could not be decoded into the expected shape."""


@dataclass(slots=True)
class QuotaExceeded(NonRetryableError):
    """Metrics provider refused the call (403: quota exhausted or invalid key)."""


@dataclass(slots=True)
class ContentNotFound(NonRetryableError):
    """Metrics provider reports the content as missing or deleted."""

    content_id: str | None = None


def error_for_status(
    status_code: int,
    *,
    message: str,
    retry_after: float | None = None,
) -> ViewSyncError:
    """Map a failed HTTP status onto the error taxonomy."""

    if status_code == 429:  # noqa: PLR2004
        return RateLimited(
            message=message,
            code="rate_limited",
            status_code=status_code,
            retry_after=retry_after,
        )
    if 500 <= status_code < 600:  # noqa: PLR2004
        return ServerError(
            message=message,
            code="server_error",
            status_code=status_code,
            retry_after=retry_after,
        )
    return ClientError(message=message, code=f"http_{status_code}", status_code=status_code)
