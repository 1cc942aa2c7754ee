"""Upstream metrics provider (YouTube Data API statistics)."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from view_sync.errors import ClientError, ContentNotFound, ParseError, QuotaExceeded
from view_sync.http.client import ResilientClient
from view_sync.metrics.models import coerce_views

logger = logging.getLogger(__name__)

HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
DEFAULT_KEY_COOLDOWN_SECONDS = 3_600
VIDEOS_ENDPOINT = "/videos"


@runtime_checkable
class MetricsProvider(Protocol):
    """Source of raw view counts for content ids."""

    async def fetch_views(self, content_id: str) -> int:
        """Return the current view count or raise a provider error."""
        raise NotImplementedError


class YouTubeMetricsProvider:
    """Reads ``statistics.viewCount`` for one video per call.

    Several API keys may be configured. A key rejected with ``403`` is parked
    for ``key_cooldown_seconds`` and the next key is tried; once every key is
    parked, calls fail with ``QuotaExceeded`` without touching the network.
    """

    def __init__(
        self,
        client: ResilientClient,
        api_keys: tuple[str, ...],
        *,
        key_cooldown_seconds: int = DEFAULT_KEY_COOLDOWN_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if not api_keys:
            raise ValueError("At least one provider API key is required")
        self.client = client
        self.api_keys = api_keys
        self.key_cooldown_seconds = key_cooldown_seconds
        self._monotonic = monotonic
        self._exhausted_until: dict[str, float] = {}

    async def fetch_views(self, content_id: str) -> int:
        last_error: ClientError | None = None
        while True:
            key = self._available_key()
            if key is None:
                raise QuotaExceeded(
                    message="All provider API keys have exhausted their quota.",
                    code="quota_exceeded",
                    status_code=HTTP_FORBIDDEN,
                ) from last_error

            try:
                payload = await self.client.request(
                    "GET",
                    VIDEOS_ENDPOINT,
                    params={"part": "statistics", "id": content_id, "key": key},
                    authenticated=False,
                )
            except ClientError as error:
                if error.status_code == HTTP_NOT_FOUND:
                    raise ContentNotFound(
                        message=f"Content {content_id} not found upstream",
                        code="content_not_found",
                        status_code=HTTP_NOT_FOUND,
                        content_id=content_id,
                    ) from error
                if error.status_code != HTTP_FORBIDDEN:
                    raise
                last_error = error
                self._park_key(key)
                continue

            return _extract_views(payload, content_id)

    def available_key_count(self) -> int:
        now = self._monotonic()
        return sum(1 for key in self.api_keys if self._exhausted_until.get(key, 0.0) <= now)

    def _available_key(self) -> str | None:
        now = self._monotonic()
        for key in self.api_keys:
            if self._exhausted_until.get(key, 0.0) <= now:
                return key
        return None

    def _park_key(self, key: str) -> None:
        self._exhausted_until[key] = self._monotonic() + self.key_cooldown_seconds
        logger.warning(
            "Provider key %s rejected with 403; parked for %ds (%d key(s) left)",
            _key_fingerprint(key),
            self.key_cooldown_seconds,
            self.available_key_count(),
        )


def _extract_views(payload: object, content_id: str) -> int:
    if not isinstance(payload, dict):
        raise ParseError(
            message=f"Unexpected provider payload for {content_id}",
            code="invalid_payload",
        )
    items = payload.get("items")
    if not isinstance(items, list):
        raise ParseError(
            message=f"Provider payload for {content_id} has no items list",
            code="invalid_payload",
        )
    if not items:
        raise ContentNotFound(
            message=f"Content {content_id} not found upstream",
            code="content_not_found",
            content_id=content_id,
        )
    first = items[0]
    statistics = first.get("statistics") if isinstance(first, dict) else None
    if not isinstance(statistics, dict):
        raise ParseError(
            message=f"Provider item for {content_id} has no statistics",
            code="invalid_payload",
        )
    try:
        return coerce_views(statistics.get("viewCount"))
    except ValueError as error:
        raise ParseError(
            message=f"Invalid viewCount for {content_id}: {error}",
            code="invalid_view_count",
        ) from error


def _key_fingerprint(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:8]
