"""Small time-boxed response cache for adapter catalog lookups."""

from __future__ import annotations

import threading
from typing import Any

from .retry import Clock


class TTLCache:
    """Thread-safe mapping whose entries expire ``ttl`` seconds after insertion."""

    def __init__(self, ttl: float, clock: Clock | None = None) -> None:
        self.ttl = ttl
        self.clock = clock or Clock()
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self.clock.time():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self.clock.time() + self.ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
