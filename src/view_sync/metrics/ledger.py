"""Durable, monotonic last-known view counts that survive upstream deletion."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime

from view_sync.metrics.models import LedgerStats, MetricRecord, MetricStatus, coerce_views
from view_sync.storage.common import to_utc, utc_now
from view_sync.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)


class MetricsLedger:
    """Per-content record of the highest view count ever observed.

    ``set`` never lowers a stored value: a provider answering zero for a
    deleted or throttled video must not wipe the last good number. Records
    are never physically removed; ``mark_deleted`` only flips their status.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self._clock = clock

    def get(self, content_id: str) -> MetricRecord | None:
        raw = self.store.get(content_id)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise TypeError("ledger record must be a JSON object")
            return MetricRecord.from_payload(content_id, payload)
        except (json.JSONDecodeError, TypeError, ValueError) as error:
            # Corrupt rows are left in place.
            logger.warning("Unreadable ledger record for %s: %s", content_id, error)
            return None

    def set(self, content_id: str, views: int) -> MetricRecord:
        """Record ``views`` if there is no record yet or it exceeds the stored value.

        Returns the record as stored after the call. A higher value on a
        deleted record reactivates it.
        """

        views = coerce_views(views)
        existing = self.get(content_id)
        if existing is not None and views <= existing.views:
            if views < existing.views:
                logger.info(
                    "Ignoring lower view count for %s (stored=%d, received=%d)",
                    content_id,
                    existing.views,
                    views,
                )
            return existing

        record = MetricRecord(
            content_id=content_id,
            views=views,
            status=MetricStatus.ACTIVE,
            last_updated=self._clock(),
        )
        self._write(record)
        return record

    def override(self, content_id: str, views: int) -> MetricRecord:
        """Unconditionally replace the stored view count (admin correction)."""

        views = coerce_views(views)
        existing = self.get(content_id)
        record = MetricRecord(
            content_id=content_id,
            views=views,
            status=existing.status if existing is not None else MetricStatus.ACTIVE,
            last_updated=self._clock(),
            deleted_at=existing.deleted_at if existing is not None else None,
        )
        logger.warning(
            "Overriding ledger views for %s: %s -> %d",
            content_id,
            existing.views if existing is not None else "-",
            views,
        )
        self._write(record)
        return record

    def mark_deleted(self, content_id: str) -> MetricRecord | None:
        """Flag an existing record as deleted, keeping its last known views.

        Without a prior record there is nothing to preserve and None is
        returned. Marking an already deleted record keeps its original
        ``deleted_at``.
        """

        existing = self.get(content_id)
        if existing is None:
            logger.info("No ledger record to mark deleted for %s", content_id)
            return None
        if existing.is_deleted:
            return existing

        now = self._clock()
        existing.status = MetricStatus.DELETED
        existing.deleted_at = now
        existing.last_updated = now
        self._write(existing)
        logger.info("Marked %s as deleted (views=%d)", content_id, existing.views)
        return existing

    def get_all(self) -> dict[str, MetricRecord]:
        records: dict[str, MetricRecord] = {}
        for content_id in self.store.keys():
            record = self.get(content_id)
            if record is not None:
                records[content_id] = record
        return records

    def get_stats(self) -> LedgerStats:
        stats = LedgerStats()
        for record in self.get_all().values():
            stats.total += 1
            if record.is_deleted:
                stats.deleted += 1
            else:
                stats.active += 1
            stats.total_views += record.views
        return stats

    def export(self) -> str:
        """Serialize every record as pretty-printed JSON keyed by content id."""

        payload = {content_id: record.to_payload() for content_id, record in self.get_all().items()}
        return json.dumps(payload, indent=2, sort_keys=True)

    def import_(self, payload: str | dict[str, object]) -> int:
        """Merge exported records into the ledger and return how many changed.

        Merge keeps the higher view count, lets ``deleted`` win over
        ``active``, keeps the earliest ``deleted_at`` and the latest
        ``last_updated``. Importing the same data twice changes nothing.
        """

        data = json.loads(payload) if isinstance(payload, str) else payload
        if not isinstance(data, dict):
            raise ValueError("Ledger import payload must be a JSON object keyed by content id")

        incoming: list[MetricRecord] = []
        for content_id, raw in data.items():
            if not isinstance(raw, dict):
                raise ValueError(f"Ledger import entry for {content_id!r} must be an object")
            incoming.append(MetricRecord.from_payload(str(content_id), raw))

        changed = 0
        for record in incoming:
            existing = self.get(record.content_id)
            merged = record if existing is None else _merge(existing, record)
            if existing is not None and _same(existing, merged):
                continue
            self._write(merged)
            changed += 1
        logger.info("Ledger import merged %d record(s), %d changed", len(incoming), changed)
        return changed

    def _write(self, record: MetricRecord) -> None:
        self.store.set(
            record.content_id,
            json.dumps(record.to_payload(), separators=(",", ":")),
        )


def _merge(existing: MetricRecord, incoming: MetricRecord) -> MetricRecord:
    deleted = existing.is_deleted or incoming.is_deleted
    deleted_candidates = [
        to_utc(value) for value in (existing.deleted_at, incoming.deleted_at) if value is not None
    ]
    return MetricRecord(
        content_id=existing.content_id,
        views=max(existing.views, incoming.views),
        status=MetricStatus.DELETED if deleted else MetricStatus.ACTIVE,
        last_updated=max(to_utc(existing.last_updated), to_utc(incoming.last_updated)),
        deleted_at=min(deleted_candidates) if deleted and deleted_candidates else None,
    )


def _same(left: MetricRecord, right: MetricRecord) -> bool:
    return left.to_payload() == right.to_payload()
