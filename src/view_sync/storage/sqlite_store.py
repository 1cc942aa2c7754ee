"""SQLite-backed implementation of the key-value persistence port."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, delete, select

from view_sync.storage.alembic_runner import upgrade_head
from view_sync.storage.common import build_sqlite_engine, utc_now
from view_sync.storage.sqlmodel_models import KvEntry

logger = logging.getLogger(__name__)


class SQLiteKeyValueStore:
    """Namespaced key-value store persisted in one SQLite table.

    Several stores can share a database file (and an engine); rows are
    partitioned by ``namespace`` so the metrics cache and the ledger never
    see each other's keys.
    """

    def __init__(self, engine: Engine, *, namespace: str) -> None:
        if not namespace:
            raise ValueError("namespace must be a non-empty string")
        self.engine = engine
        self.namespace = namespace

    @classmethod
    def open(cls, db_path: Path, *, namespace: str, busy_timeout_ms: int = 5000) -> SQLiteKeyValueStore:
        """Migrate ``db_path`` to the latest schema and return a store over it."""

        db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(db_path)
        engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        return cls(engine, namespace=namespace)

    def get(self, key: str) -> str | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(KvEntry).where(
                    KvEntry.namespace == self.namespace,
                    KvEntry.key == key,
                ),
            ).one_or_none()
            return None if row is None else row.value

    def set(self, key: str, value: str) -> None:
        with Session(self.engine) as session:
            row = session.exec(
                select(KvEntry).where(
                    KvEntry.namespace == self.namespace,
                    KvEntry.key == key,
                ),
            ).one_or_none()
            if row is None:
                row = KvEntry(namespace=self.namespace, key=key, value=value, updated_at=utc_now())
            else:
                row.value = value
                row.updated_at = utc_now()
            session.add(row)
            session.commit()

    def remove(self, key: str) -> None:
        with Session(self.engine) as session:
            session.exec(
                delete(KvEntry).where(
                    col(KvEntry.namespace) == self.namespace,
                    col(KvEntry.key) == key,
                ),
            )
            session.commit()

    def keys(self) -> list[str]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(KvEntry.key)
                .where(KvEntry.namespace == self.namespace)
                .order_by(col(KvEntry.key)),
            ).all()
            return [str(row) for row in rows]

    def close(self) -> None:
        logger.debug("Disposing SQLite engine for namespace=%s", self.namespace)
        self.engine.dispose()
