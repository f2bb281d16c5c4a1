import threading
import time
from dataclasses import dataclass
from typing import Any


@dataclass
class _Entry:
    expires_at: float
    value: Any


class TTLCache:
    """Small in-process cache for values that are cheap to refetch, such as profile roles."""

    def __init__(self, *, max_items: int = 5000, ttl_s: int = 60) -> None:
        self._max_items = max(1, int(max_items or 1))
        self._ttl_s = max(1, int(ttl_s or 1))
        self._items: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            if entry.expires_at <= time.monotonic():
                self._items.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._evict_if_needed()
            self._items[key] = _Entry(expires_at=time.monotonic() + self._ttl_s, value=value)

    def _evict_if_needed(self) -> None:
        if len(self._items) < self._max_items:
            return
        now = time.monotonic()
        for k in [k for k, e in self._items.items() if e.expires_at <= now]:
            self._items.pop(k, None)
        while len(self._items) >= self._max_items and self._items:
            self._items.pop(next(iter(self._items)), None)
