"""
StudyPartner Intelligence - Bounded TTL Cache

Process-local memo used for the intent cache and the hot response cache.
Instances are injected into their owners; there is no module-level cache.
Entries past their TTL are never returned. At capacity the oldest inserted
key is evicted.
"""

import time
import threading
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[Hashable, tuple[float, V]]" = OrderedDict()

    def get(self, key: Hashable) -> Optional[V]:
        now = self._clock()
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            stored_at, value = item
            if now - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: V) -> None:
        now = self._clock()
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (now, value)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_where(self, predicate: Callable[[Hashable, Any], bool]) -> int:
        """Drop every entry whose (key, value) satisfies predicate."""
        with self._lock:
            doomed = [k for k, (_, v) in self._entries.items() if predicate(k, v)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def sweep(self) -> int:
        """Remove expired entries. Returns how many were dropped."""
        now = self._clock()
        with self._lock:
            doomed = [k for k, (t, _) in self._entries.items() if now - t >= self.ttl_seconds]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
