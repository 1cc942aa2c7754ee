"""Programmatic Alembic entry points for the key-value schema."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext

from view_sync.storage.common import build_sqlite_engine

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


def alembic_config(db_path: Path) -> Config:
    """Alembic config pointing at the bundled migrations and ``db_path``."""

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Apply Alembic migrations up to head for the given SQLite database."""

    logger.debug("Upgrading %s to head", db_path)
    command.upgrade(alembic_config(db_path), "head")


def current_revision(db_path: Path) -> str | None:
    """Return the revision stamped in ``db_path`` or None for an unmigrated file."""

    engine = build_sqlite_engine(db_path=db_path)
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
