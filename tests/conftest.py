"""Shared test fixtures."""

from __future__ import annotations

import os
from datetime import UTC, datetime

import pytest


class FakeClock:
    """Settable wall clock for cache and ledger tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("VIEW_SYNC_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture()
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()
