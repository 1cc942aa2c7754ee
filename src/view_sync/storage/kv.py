"""Minimal key-value persistence port used by the metrics cache and ledger."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """Persistence contract: string keys mapped to serialized string values."""

    def get(self, key: str) -> str | None:
        """Return the stored value or None when the key is absent."""
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        """Create or replace the value stored under ``key``."""
        raise NotImplementedError

    def remove(self, key: str) -> None:
        """Delete ``key``; missing keys are ignored."""
        raise NotImplementedError

    def keys(self) -> list[str]:
        """Return every stored key in insertion-independent sorted order."""
        raise NotImplementedError


class InMemoryKeyValueStore:
    """Dict-backed store for tests and throwaway runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)
