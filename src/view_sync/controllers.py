"""Controllers for view-sync CLI commands."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

import httpx

from view_sync.config import Settings
from view_sync.errors import ViewSyncError
from view_sync.http.backing_store import BackingStoreApi
from view_sync.http.client import ResilientClient
from view_sync.metrics.cache import MetricsCache
from view_sync.metrics.ledger import MetricsLedger
from view_sync.metrics.models import (
    BatchSyncResult,
    MetricRecord,
    ServerRefreshResult,
    ViewOutcome,
)
from view_sync.metrics.provider import YouTubeMetricsProvider
from view_sync.metrics.synchronizer import BatchSynchronizer
from view_sync.storage.sqlite_store import SQLiteKeyValueStore

logger = logging.getLogger(__name__)

LEDGER_NAMESPACE = "ledger"
CACHE_NAMESPACE = "views_cache"


@dataclass(slots=True)
class SyncRunCommand:
    """CLI inputs for sequential batch fetch."""

    db_path: Path | None
    video_ids: tuple[str, ...]


@dataclass(slots=True)
class SyncServerRefreshCommand:
    """CLI inputs for server-side per-video refresh."""

    db_path: Path | None
    video_ids: tuple[str, ...]
    concurrency: int | None = None


@dataclass(slots=True)
class SyncRefreshAllCommand:
    """CLI inputs for server-wide refresh."""

    db_path: Path | None


@dataclass(slots=True)
class LedgerStatsCommand:
    db_path: Path | None


@dataclass(slots=True)
class LedgerShowCommand:
    db_path: Path | None
    video_id: str


@dataclass(slots=True)
class LedgerExportCommand:
    """CLI inputs for ledger export; stdout when ``output`` is None."""

    db_path: Path | None
    output: Path | None = None


@dataclass(slots=True)
class LedgerImportCommand:
    db_path: Path | None
    input_path: Path


@dataclass(slots=True)
class LedgerMutateCommand:
    """CLI inputs for mark-deleted and override."""

    db_path: Path | None
    video_id: str
    views: int | None = None


@dataclass(slots=True)
class AdminBulkDeleteCommand:
    ids: tuple[str, ...]


@dataclass(slots=True)
class CommandResult:
    """Printable output plus overall outcome of one command."""

    lines: list[str] = field(default_factory=list)
    success: bool = True


@dataclass(slots=True)
class _Stores:
    ledger: MetricsLedger
    cache: MetricsCache


class SyncCliController:
    """Coordinates synchronizer and admin command execution.

    ``transport`` and ``sleep`` are forwarded to every HTTP client the
    controller builds; tests use them to mock the network.
    """

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._sleep = sleep

    def run(self, command: SyncRunCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_sync()
        with _stores(settings) as stores:
            result = asyncio.run(self._run_batch(settings, stores, command.video_ids))

        lines = [_outcome_line(outcome) for outcome in result.outcomes]
        lines.append(
            "Batch fetch completed: "
            f"total={len(result.outcomes)} cached={result.from_cache} "
            f"fetched={result.fetched} deleted={result.deleted} failed={result.failed}",
        )
        return CommandResult(
            lines=lines,
            success=not result.outcomes or result.failed < len(result.outcomes),
        )

    def server_refresh(self, command: SyncServerRefreshCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_backing_store()
        concurrency = command.concurrency or settings.sync.server_refresh_concurrency
        with _stores(settings) as stores:
            result = asyncio.run(
                self._run_server_refresh(settings, stores, command.video_ids, concurrency),
            )

        lines = [_outcome_line(outcome) for outcome in result.outcomes]
        lines.append(
            "Server refresh completed: "
            f"total={len(result.outcomes)} succeeded={result.succeeded} failed={result.failed}",
        )
        return CommandResult(lines=lines, success=not result.outcomes or result.succeeded > 0)

    def refresh_all(self, command: SyncRefreshAllCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_backing_store()
        with _stores(settings) as stores:
            try:
                cleared = asyncio.run(self._run_refresh_all(settings, stores))
            except ViewSyncError as error:
                return CommandResult(
                    lines=[f"Refresh failed: {error} ({error.code})"],
                    success=False,
                )
        return CommandResult(
            lines=[f"Server-wide refresh requested; cache entries cleared={cleared}"],
        )

    def bulk_delete_videos(self, command: AdminBulkDeleteCommand) -> CommandResult:
        return self._bulk_delete(command, kind="video")

    def bulk_delete_leads(self, command: AdminBulkDeleteCommand) -> CommandResult:
        return self._bulk_delete(command, kind="lead")

    def _bulk_delete(self, command: AdminBulkDeleteCommand, *, kind: str) -> CommandResult:
        settings = Settings.from_env()
        settings.validate_for_backing_store()
        if not command.ids:
            raise ValueError(f"At least one {kind} id is required.")

        async def _delete() -> None:
            async with self._backing_store_client(settings) as client:
                api = BackingStoreApi(client)
                if kind == "video":
                    await api.bulk_delete_videos(list(command.ids))
                else:
                    await api.bulk_delete_leads(list(command.ids))

        try:
            asyncio.run(_delete())
        except ViewSyncError as error:
            return CommandResult(
                lines=[
                    f"Bulk delete of {len(command.ids)} {kind}(s) failed: {error} ({error.code})",
                ],
                success=False,
            )
        return CommandResult(lines=[f"Deleted {len(command.ids)} {kind}(s)."])

    async def _run_batch(
        self,
        settings: Settings,
        stores: _Stores,
        video_ids: tuple[str, ...],
    ) -> BatchSyncResult:
        async with self._provider_client(settings) as client:
            provider = YouTubeMetricsProvider(
                client,
                settings.provider.api_keys,
                key_cooldown_seconds=settings.provider.key_cooldown_seconds,
            )
            synchronizer = BatchSynchronizer(
                provider,
                stores.cache,
                stores.ledger,
                request_delay_seconds=settings.sync.request_delay_seconds,
                sleep=self._sleep,
            )
            return await synchronizer.batch_fetch(
                list(video_ids),
                on_progress=_log_progress,
            )

    async def _run_server_refresh(
        self,
        settings: Settings,
        stores: _Stores,
        video_ids: tuple[str, ...],
        concurrency: int,
    ) -> ServerRefreshResult:
        async with self._backing_store_client(settings) as client:
            synchronizer = BatchSynchronizer(
                None,
                stores.cache,
                stores.ledger,
                api=BackingStoreApi(client),
                sleep=self._sleep,
            )
            return await synchronizer.server_refresh(
                list(video_ids),
                on_progress=_log_progress,
                concurrency=concurrency,
            )

    async def _run_refresh_all(self, settings: Settings, stores: _Stores) -> int:
        async with self._backing_store_client(settings) as client:
            synchronizer = BatchSynchronizer(
                None,
                stores.cache,
                stores.ledger,
                api=BackingStoreApi(client),
                sleep=self._sleep,
            )
            return await synchronizer.refresh_all()

    def _backing_store_client(self, settings: Settings) -> ResilientClient:
        backing = settings.backing_store
        return ResilientClient(
            backing.base_url,
            token=backing.token,
            auth_reads=backing.auth_reads,
            timeout_seconds=backing.request_timeout_seconds,
            max_attempts=backing.max_attempts,
            backoff_base_seconds=backing.backoff_base_seconds,
            backoff_jitter_seconds=backing.backoff_jitter_seconds,
            retry_after_max_seconds=backing.retry_after_max_seconds,
            transport=self._transport,
            sleep=self._sleep,
        )

    def _provider_client(self, settings: Settings) -> ResilientClient:
        provider = settings.provider
        return ResilientClient(
            provider.base_url,
            timeout_seconds=provider.request_timeout_seconds,
            max_attempts=provider.max_attempts,
            backoff_base_seconds=settings.backing_store.backoff_base_seconds,
            backoff_jitter_seconds=settings.backing_store.backoff_jitter_seconds,
            retry_after_max_seconds=settings.backing_store.retry_after_max_seconds,
            transport=self._transport,
            sleep=self._sleep,
        )


class LedgerCliController:
    """Coordinates ledger inspection and maintenance commands."""

    def stats(self, command: LedgerStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _stores(settings) as stores:
            stats = stores.ledger.get_stats()
        return [
            "Ledger stats: "
            f"total={stats.total} active={stats.active} deleted={stats.deleted} "
            f"total_views={stats.total_views}",
        ]

    def show(self, command: LedgerShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _stores(settings) as stores:
            record = stores.ledger.get(command.video_id)
            cached = stores.cache.entry(command.video_id)
        if record is None:
            lines = [f"No ledger record for {command.video_id}"]
        else:
            lines = [_record_line(record)]
        if cached is not None:
            lines.append(f"  cache: views={cached.views} timestamp={cached.timestamp.isoformat()}")
        return lines

    def export(self, command: LedgerExportCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _stores(settings) as stores:
            payload = stores.ledger.export()
        if command.output is None:
            return [payload]
        command.output.parent.mkdir(parents=True, exist_ok=True)
        command.output.write_text(payload + "\n", encoding="utf-8")
        count = len(json.loads(payload))
        return [f"Exported {count} ledger record(s) to {command.output}"]

    def import_(self, command: LedgerImportCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        payload = command.input_path.read_text(encoding="utf-8")
        with _stores(settings) as stores:
            changed = stores.ledger.import_(payload)
        return [f"Imported ledger from {command.input_path}: changed={changed}"]

    def mark_deleted(self, command: LedgerMutateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _stores(settings) as stores:
            record = stores.ledger.mark_deleted(command.video_id)
        if record is None:
            return [f"No ledger record for {command.video_id}; nothing to mark"]
        return [_record_line(record)]

    def override(self, command: LedgerMutateCommand) -> list[str]:
        if command.views is None:
            raise ValueError("views is required for override")
        settings = Settings.from_env(db_path=command.db_path)
        with _stores(settings) as stores:
            record = stores.ledger.override(command.video_id, command.views)
            stores.cache.remove(command.video_id)
        return [_record_line(record)]


@contextmanager
def _stores(settings: Settings) -> Iterator[_Stores]:
    settings.validate_cache()
    ledger_store = SQLiteKeyValueStore.open(settings.db_path, namespace=LEDGER_NAMESPACE)
    cache_store = SQLiteKeyValueStore(ledger_store.engine, namespace=CACHE_NAMESPACE)
    try:
        yield _Stores(
            ledger=MetricsLedger(ledger_store),
            cache=MetricsCache(
                cache_store,
                max_age=timedelta(hours=settings.cache.max_age_hours),
                refresh_hour=settings.cache.refresh_hour,
                tz=settings.cache_timezone(),
            ),
        )
    finally:
        ledger_store.close()


def _log_progress(index: int, total: int, from_cache: bool) -> None:
    logger.info("Progress %d/%d%s", index, total, " (cache)" if from_cache else "")


def _outcome_line(outcome: ViewOutcome) -> str:
    views = "-" if outcome.views is None else str(outcome.views)
    if outcome.from_cache:
        source = "cache"
    elif outcome.deleted:
        source = "ledger(deleted)"
    elif outcome.error is not None:
        source = f"ledger(error={outcome.error})"
    else:
        source = "live"
    return f"{outcome.content_id} views={views} source={source}"


def _record_line(record: MetricRecord) -> str:
    deleted_at = record.deleted_at.isoformat() if record.deleted_at else "-"
    return (
        f"{record.content_id} views={record.views} status={record.status.value} "
        f"last_updated={record.last_updated.isoformat()} deleted_at={deleted_at}"
    )
