"""Domain models for view metrics caching, ledger and synchronization."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from view_sync.storage.common import from_iso


class MetricStatus(str, Enum):
    """Lifecycle states of a ledger record."""

    ACTIVE = "active"
    DELETED = "deleted"


@dataclass(slots=True)
class MetricRecord:
    """Last known good view count for one content id."""

    content_id: str
    views: int
    status: MetricStatus
    last_updated: datetime
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.status == MetricStatus.DELETED

    def to_payload(self) -> dict[str, object]:
        return {
            "views": self.views,
            "status": self.status.value,
            "lastUpdated": self.last_updated.isoformat(),
            "deletedAt": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    @classmethod
    def from_payload(cls, content_id: str, payload: dict[str, object]) -> MetricRecord:
        """Build a record from its serialized form; raises ValueError on bad input."""

        views = coerce_views(payload.get("views"))
        status = MetricStatus(str(payload.get("status") or MetricStatus.ACTIVE.value))
        raw_updated = payload.get("lastUpdated")
        if not isinstance(raw_updated, str) or not raw_updated:
            raise ValueError(f"Missing lastUpdated for {content_id!r}")
        raw_deleted = payload.get("deletedAt")
        deleted_at = from_iso(raw_deleted) if isinstance(raw_deleted, str) and raw_deleted else None
        return cls(
            content_id=content_id,
            views=views,
            status=status,
            last_updated=from_iso(raw_updated),
            deleted_at=deleted_at,
        )


@dataclass(slots=True)
class CacheEntry:
    """Memoized provider answer for one content id."""

    content_id: str
    views: int
    timestamp: datetime

    def to_payload(self) -> dict[str, object]:
        return {"views": self.views, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_payload(cls, content_id: str, payload: dict[str, object]) -> CacheEntry:
        raw_timestamp = payload.get("timestamp")
        if not isinstance(raw_timestamp, str) or not raw_timestamp:
            raise ValueError(f"Missing timestamp for {content_id!r}")
        return cls(
            content_id=content_id,
            views=coerce_views(payload.get("views")),
            timestamp=from_iso(raw_timestamp),
        )


@dataclass(slots=True)
class LedgerStats:
    """Aggregate counters over every ledger record."""

    total: int = 0
    active: int = 0
    deleted: int = 0
    total_views: int = 0


@dataclass(slots=True)
class SyncTask:
    """One unit of synchronizer work; never persisted.

    HTTP retries happen inside the client, so ``attempt_number`` only labels
    the log lines for this id.
    """

    content_id: str
    attempt_number: int = 1


@dataclass(slots=True)
class ViewOutcome:
    """Best-effort view count resolved for one content id."""

    content_id: str
    views: int | None
    from_cache: bool = False
    deleted: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class BatchSyncResult:
    """Ordered outcomes of one sequential batch fetch."""

    outcomes: list[ViewOutcome] = field(default_factory=list)
    from_cache: int = 0
    fetched: int = 0
    deleted: int = 0
    failed: int = 0

    def views_by_id(self) -> dict[str, int | None]:
        return {outcome.content_id: outcome.views for outcome in self.outcomes}


@dataclass(slots=True)
class ServerRefreshResult:
    """Index-aligned outcomes of one bounded-concurrency server refresh."""

    outcomes: list[ViewOutcome] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0


def coerce_views(value: object) -> int:
    """Validate and normalize a raw view count into a non-negative int."""

    if isinstance(value, bool):
        raise ValueError(f"Invalid view count: {value!r}")
    if isinstance(value, int):
        views = value
    elif isinstance(value, float) and value.is_integer():
        views = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        views = int(value.strip())
    else:
        raise ValueError(f"Invalid view count: {value!r}")
    if views < 0:
        raise ValueError(f"View count must be >= 0, got {views}")
    return views
