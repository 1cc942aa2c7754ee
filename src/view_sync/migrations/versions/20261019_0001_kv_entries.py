"""Create namespaced key-value table for metrics cache and ledger."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "kv_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("namespace", sa.String(), nullable=False),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("namespace", "key", name="uq_kv_entries_namespace_key"),
    )
    op.create_index("ix_kv_entries_namespace", "kv_entries", ["namespace"])
    op.create_index("ix_kv_entries_key", "kv_entries", ["key"])


def downgrade() -> None:
    op.drop_index("ix_kv_entries_key", table_name="kv_entries")
    op.drop_index("ix_kv_entries_namespace", table_name="kv_entries")
    op.drop_table("kv_entries")
