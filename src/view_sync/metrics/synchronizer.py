"""Reconcile provider view counts with the cache and ledger."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from view_sync.errors import ContentNotFound, ViewSyncError
from view_sync.http.backing_store import BackingStoreApi
from view_sync.metrics.cache import MetricsCache
from view_sync.metrics.ledger import MetricsLedger
from view_sync.metrics.models import (
    BatchSyncResult,
    ServerRefreshResult,
    SyncTask,
    ViewOutcome,
    coerce_views,
)
from view_sync.metrics.provider import MetricsProvider

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_DELAY_SECONDS = 0.25
DEFAULT_SERVER_REFRESH_CONCURRENCY = 5
UNEXPECTED_ERROR_CODE = "unexpected_error"

ProgressCallback = Callable[[int, int, bool], None]
Sleep = Callable[[float], Awaitable[None]]


class BatchSynchronizer:
    """Drive view refreshes for a list of content ids.

    Failures are isolated per id: an error never aborts the batch, the id
    falls back to the ledger's last known value (or None) instead.
    """

    def __init__(  # noqa: PLR0913
        self,
        provider: MetricsProvider | None,
        cache: MetricsCache,
        ledger: MetricsLedger,
        *,
        api: BackingStoreApi | None = None,
        request_delay_seconds: float = DEFAULT_REQUEST_DELAY_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if request_delay_seconds < 0:
            raise ValueError("request_delay_seconds must be >= 0")
        self.provider = provider
        self.cache = cache
        self.ledger = ledger
        self.api = api
        self.request_delay_seconds = request_delay_seconds
        self._sleep = sleep

    async def batch_fetch(
        self,
        content_ids: Sequence[str],
        on_progress: ProgressCallback | None = None,
    ) -> BatchSyncResult:
        """Resolve views sequentially; the delay applies between provider calls only."""

        result = BatchSyncResult()
        total = len(content_ids)
        provider_called = False

        for index, content_id in enumerate(content_ids, start=1):
            cached = self.cache.get(content_id)
            if cached is not None:
                logger.debug("Cache hit for %s (views=%d)", content_id, cached)
                outcome = ViewOutcome(content_id=content_id, views=cached, from_cache=True)
                result.from_cache += 1
            else:
                if provider_called and self.request_delay_seconds > 0:
                    await self._sleep(self.request_delay_seconds)
                provider_called = True
                outcome = await self._fetch_one(SyncTask(content_id=content_id))
                if outcome.deleted:
                    result.deleted += 1
                elif outcome.ok:
                    result.fetched += 1
                else:
                    result.failed += 1

            result.outcomes.append(outcome)
            if on_progress is not None:
                on_progress(index, total, outcome.from_cache)

        logger.info(
            "Batch fetch finished: %d id(s), %d from cache, %d fetched, %d deleted, %d failed",
            total,
            result.from_cache,
            result.fetched,
            result.deleted,
            result.failed,
        )
        return result

    async def server_refresh(
        self,
        content_ids: Sequence[str],
        on_progress: ProgressCallback | None = None,
        concurrency: int = DEFAULT_SERVER_REFRESH_CONCURRENCY,
    ) -> ServerRefreshResult:
        """Ask the backing store to refresh each id using a bounded worker pool.

        Outcomes are aligned with ``content_ids``; progress is reported in
        completion order, with a running count as the index.
        """

        api = self._require_api()
        if concurrency <= 0:
            raise ValueError("concurrency must be > 0")

        total = len(content_ids)
        outcomes: list[ViewOutcome | None] = [None] * total
        next_index = 0
        completed = 0

        async def worker() -> None:
            nonlocal next_index, completed
            while next_index < total:
                index = next_index
                next_index += 1
                content_id = content_ids[index]
                try:
                    outcomes[index] = await self._refresh_one(api, content_id)
                finally:
                    completed += 1
                    if on_progress is not None:
                        on_progress(completed, total, False)

        await asyncio.gather(*(worker() for _ in range(min(concurrency, total))))

        result = ServerRefreshResult(
            outcomes=[outcome for outcome in outcomes if outcome is not None],
        )
        result.succeeded = sum(1 for outcome in result.outcomes if outcome.ok)
        result.failed = total - result.succeeded
        logger.info(
            "Server refresh finished: %d id(s), %d succeeded, %d failed",
            total,
            result.succeeded,
            result.failed,
        )
        return result

    async def refresh_all(self) -> int:
        """Trigger the server-wide refresh and drop every cached view count."""

        api = self._require_api()
        await api.refresh_all_views()
        cleared = self.cache.clear()
        logger.info("Server-wide view refresh requested; cleared %d cache entr(ies)", cleared)
        return cleared

    async def _fetch_one(self, task: SyncTask) -> ViewOutcome:
        content_id = task.content_id
        if self.provider is None:
            raise ValueError("A metrics provider is required for batch fetches")
        try:
            views = await self.provider.fetch_views(content_id)
        except ContentNotFound:
            record = self.ledger.mark_deleted(content_id)
            self.cache.remove(content_id)
            logger.info("Content %s is gone upstream; serving last known views", content_id)
            return ViewOutcome(
                content_id=content_id,
                views=record.views if record is not None else None,
                deleted=True,
            )
        except ViewSyncError as error:
            logger.warning(
                "Fetching views for %s failed on attempt %d (%s); falling back to ledger",
                content_id,
                task.attempt_number,
                error.code,
            )
            return ViewOutcome(
                content_id=content_id,
                views=self._ledger_views(content_id),
                error=error.code,
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Unexpected error fetching views for %s on attempt %d; falling back to ledger",
                content_id,
                task.attempt_number,
            )
            return ViewOutcome(
                content_id=content_id,
                views=self._ledger_views(content_id),
                error=UNEXPECTED_ERROR_CODE,
            )

        self.cache.set(content_id, views)
        record = self.ledger.set(content_id, views)
        return ViewOutcome(content_id=content_id, views=record.views)

    async def _refresh_one(self, api: BackingStoreApi, content_id: str) -> ViewOutcome:
        try:
            response = await api.refresh_video_views(content_id)
        except (ViewSyncError, ValueError) as error:
            code = error.code if isinstance(error, ViewSyncError) else "invalid_id"
            logger.warning("Server refresh for %s failed (%s)", content_id, code)
            return ViewOutcome(
                content_id=content_id,
                views=self._ledger_views(content_id),
                error=code,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error refreshing views for %s", content_id)
            return ViewOutcome(
                content_id=content_id,
                views=self._ledger_views(content_id),
                error=UNEXPECTED_ERROR_CODE,
            )

        views = _response_views(response)
        if views is None:
            self.cache.remove(content_id)
            return ViewOutcome(content_id=content_id, views=self._ledger_views(content_id))

        record = self.ledger.set(content_id, views)
        self.cache.set(content_id, views)
        return ViewOutcome(content_id=content_id, views=record.views)

    def _ledger_views(self, content_id: str) -> int | None:
        record = self.ledger.get(content_id)
        return record.views if record is not None else None

    def _require_api(self) -> BackingStoreApi:
        if self.api is None:
            raise ValueError("A backing store API client is required for server refreshes")
        return self.api


def _response_views(response: object) -> int | None:
    if not isinstance(response, dict):
        return None
    for key in ("views", "youtubeViews", "viewCount"):
        if response.get(key) is None:
            continue
        try:
            return coerce_views(response[key])
        except ValueError:
            logger.warning("Ignoring invalid %s in refresh response: %r", key, response[key])
            return None
    return None
