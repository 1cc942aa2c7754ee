"""SQLModel ORM tables for local metric storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class KvEntry(SQLModel, table=True):
    __tablename__ = "kv_entries"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "namespace",
            "key",
            name="uq_kv_entries_namespace_key",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    namespace: str = Field(index=True)
    key: str = Field(index=True)
    value: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
