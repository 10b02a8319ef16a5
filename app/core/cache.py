# app/core/cache.py

import threading
import time
from typing import Any, Callable, Hashable, Optional

from cachetools import TTLCache


class ResultCache:
    """
    In-process TTL + LRU cache for read paths (results, history).

    Only latency depends on it: every caller must behave the same on a miss.
    Entries expire ``ttl_seconds`` after being written; once ``max_entries``
    is exceeded the least recently read entry is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries = TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=clock)
        # TTLCache is not thread-safe on its own
        self._lock = threading.Lock()

    @staticmethod
    def key(prefix: str, *parts: Hashable) -> str:
        return ":".join([prefix, *(str(p) for p in parts)])

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def invalidate(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``; returns the count."""
        with self._lock:
            stale = [k for k in list(self._entries.keys()) if k.startswith(prefix)]
            for k in stale:
                self._entries.pop(k, None)
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)
