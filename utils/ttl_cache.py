"""Small read-through TTL cache keyed by normalized strings."""

from __future__ import annotations

import time
from typing import Callable, Generic, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Per-key expiry cache without locking.

    Concurrent refreshes for the same key simply overwrite each other; the
    latest write wins.
    """

    def __init__(self, ttl_seconds: float, now: Callable[[], float] | None = None) -> None:
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._now = now or time.monotonic
        self._rows: dict[str, tuple[float, V]] = {}

    def now(self) -> float:
        return float(self._now())

    def get(self, key: str) -> V | None:
        row = self._rows.get(key)
        if row is None:
            return None
        stored_at, value = row
        if (self.now() - stored_at) > self.ttl_seconds:
            self._rows.pop(key, None)
            return None
        return value

    def set(self, key: str, value: V) -> None:
        self._rows[key] = (self.now(), value)

    def pop(self, key: str) -> None:
        self._rows.pop(key, None)

    def clear(self) -> None:
        self._rows.clear()

    def __len__(self) -> int:
        return len(self._rows)
