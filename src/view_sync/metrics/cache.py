"""Ephemeral per-content view cache gated by a daily refresh window."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta, tzinfo

from view_sync.metrics.models import CacheEntry, coerce_views
from view_sync.storage.common import to_utc, utc_now
from view_sync.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(hours=24)
DEFAULT_REFRESH_HOUR = 6


class MetricsCache:
    """Memo of the last provider answer per content id.

    An entry stays fresh while it is younger than ``max_age``, while it was
    written on the current calendar day, or while the current time is before
    today's ``refresh_hour``. The last rule holds back refreshes until the
    scheduled window so daily provider quota use stays bounded. Staleness is
    evaluated lazily on read; nothing is evicted in the background.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_age: timedelta = DEFAULT_MAX_AGE,
        refresh_hour: int = DEFAULT_REFRESH_HOUR,
        tz: tzinfo = UTC,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not 0 <= refresh_hour <= 23:  # noqa: PLR2004
            raise ValueError("refresh_hour must be between 0 and 23")
        self.store = store
        self.max_age = max_age
        self.refresh_hour = refresh_hour
        self.tz = tz
        self._clock = clock

    def get(self, content_id: str) -> int | None:
        """Return cached views when fresh, otherwise None (needs refresh)."""

        entry = self.entry(content_id)
        if entry is None:
            return None
        if not self.is_fresh(entry):
            logger.debug("Cache entry for %s is stale (timestamp=%s)", content_id, entry.timestamp)
            return None
        return entry.views

    def set(self, content_id: str, views: int, timestamp: datetime | None = None) -> CacheEntry:
        entry = CacheEntry(
            content_id=content_id,
            views=coerce_views(views),
            timestamp=to_utc(timestamp) if timestamp is not None else self._clock(),
        )
        self.store.set(content_id, json.dumps(entry.to_payload(), separators=(",", ":")))
        return entry

    def needs_update(self, content_id: str) -> bool:
        return self.get(content_id) is None

    def entry(self, content_id: str) -> CacheEntry | None:
        """Return the raw entry regardless of freshness."""

        raw = self.store.get(content_id)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise TypeError("cache entry must be a JSON object")
            return CacheEntry.from_payload(content_id, payload)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.warning("Dropping unreadable cache entry for %s", content_id)
            self.store.remove(content_id)
            return None

    def is_fresh(self, entry: CacheEntry) -> bool:
        now = to_utc(self._clock())
        timestamp = to_utc(entry.timestamp)
        if now - timestamp < self.max_age:
            return True

        local_now = now.astimezone(self.tz)
        if timestamp.astimezone(self.tz).date() == local_now.date():
            return True
        return local_now.hour < self.refresh_hour

    def remove(self, content_id: str) -> None:
        self.store.remove(content_id)

    def clear(self) -> int:
        keys = self.store.keys()
        for key in keys:
            self.store.remove(key)
        return len(keys)

    def export(self) -> dict[str, dict[str, object]]:
        exported: dict[str, dict[str, object]] = {}
        for content_id in self.store.keys():
            entry = self.entry(content_id)
            if entry is not None:
                exported[content_id] = entry.to_payload()
        return exported
