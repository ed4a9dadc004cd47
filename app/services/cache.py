"""
In-process TTL cache for listing endpoints.

Owned by the component that reads through it (see PostFeed), never a module-level
singleton. No background timer: expired entries are dropped on read and by
cleanup(), which the owner calls when it sees fit.
"""
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

_MISSING = object()


class TTLCache(Generic[T]):
    """
    Bounded key/value cache with per-entry expiry.

    At capacity the oldest inserted entry is evicted. clock returns seconds
    (time.monotonic by default) and is injectable for tests.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, T]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> T | Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return default
            self.hits += 1
            return value

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            if key in self._entries:
                # Re-set counts as a fresh insert for eviction order
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = (expires_at, value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def cleanup(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def get_or_set(self, key: str, factory: Callable[[], T], ttl: float | None = None) -> T:
        """Read-through helper. factory runs outside the lock; concurrent misses may both compute."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
