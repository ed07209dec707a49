"""TTL-bounded result cache for derived statistics.

Entries expire independently; a cached result may be stale up to its TTL
relative to a just-committed move. At capacity the oldest *inserted* entry
is evicted (not least-recently-used).
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 300.0


def make_key(operation: str, params: Mapping[str, Any] | None = None) -> str:
    """Canonical cache key: operation name plus sorted-key JSON of params."""
    if not params:
        return operation
    encoded = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{operation}:{encoded}"


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float


class QueryCache:
    """Bounded map from canonical key to ``(value, expiry)``.

    Args:
        max_size: Maximum number of entries held at once
        default_ttl: Lifetime in seconds for entries set without a TTL
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.deletes = 0
        self.evictions = 0
        self.expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(self, key: str) -> tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                logger.debug(f"Cache MISS: {key}")
                return False, None

            if self._clock() > entry.expires_at:
                del self._entries[key]
                self.misses += 1
                self.expirations += 1
                logger.debug(f"Cache EXPIRED: {key}")
                return False, None

            self.hits += 1
            logger.debug(f"Cache HIT: {key}")
            return True, entry.value

    def get(self, key: str) -> Any | None:
        """Cached value, or ``None`` on miss or expiry."""
        _, value = self._lookup(key)
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Insert ``value`` under ``key`` for ``ttl`` seconds (default TTL if None)."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        with self._lock:
            now = self._clock()
            if key in self._entries:
                # Re-setting counts as a fresh insertion
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Cache EVICTED (oldest inserted): {evicted_key}")

            self._entries[key] = CacheEntry(value=value, created_at=now, expires_at=now + ttl)
            self.sets += 1
            logger.debug(f"Cache SET: {key} (ttl {ttl}s)")

    def delete(self, key: str) -> bool:
        """Remove ``key``; returns whether it was present."""
        with self._lock:
            if self._entries.pop(key, None) is None:
                return False
            self.deletes += 1
            logger.debug(f"Cache DELETE: {key}")
            return True

    def has(self, key: str) -> bool:
        """Whether ``key`` is present and unexpired. Does not touch hit/miss counts."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._clock() > entry.expires_at:
                del self._entries[key]
                self.expirations += 1
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
        logger.info(f"Cache CLEARED: {size} entries removed")

    def cleanup(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
            for key in expired:
                del self._entries[key]
            self.expirations += len(expired)

        if expired:
            logger.info(f"Cache CLEANUP: {len(expired)} expired entries removed")
        return len(expired)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``."""
        with self._lock:
            matched = [k for k in self._entries if k.startswith(prefix)]
            for key in matched:
                del self._entries[key]
            self.deletes += len(matched)

        if matched:
            logger.info(f"Cache INVALIDATED: {len(matched)} entries under '{prefix}'")
        return len(matched)

    def get_or_compute(
        self,
        operation: str,
        params: Mapping[str, Any] | None,
        compute: Callable[[], T],
        ttl: float | None = None,
    ) -> T:
        """Serve ``operation(params)`` from cache or compute and store it.

        Callers get their own copy; mutating it leaves the cached entry intact.
        Exceptions from ``compute`` propagate and nothing is cached.
        """
        key = make_key(operation, params)
        found, value = self._lookup(key)
        if found:
            return copy.deepcopy(value)

        value = compute()
        self.set(key, copy.deepcopy(value), ttl)
        return value

    def get_stats(self) -> dict[str, Any]:
        """Cache performance counters."""
        with self._lock:
            size = len(self._entries)
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0.0
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "total_requests": total_requests,
            "hit_rate": round(hit_rate, 2),
            "size": size,
            "max_size": self.max_size,
            "utilization": round(size / self.max_size * 100, 2),
        }
