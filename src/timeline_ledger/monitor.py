"""Timing and failure accounting for aggregation calls."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SLOW_QUERY_THRESHOLD_MS = 1000.0
DEFAULT_MAX_AGE_SECONDS = 3600.0


@dataclass
class CallRecord:
    operation: str
    started_at: float
    duration_ms: float
    status: str  # "completed" or "error"
    error: str | None = None


class PerformanceMonitor:
    """Times wrapped calls, flags slow ones and counts failures.

    Args:
        slow_query_threshold_ms: Calls slower than this log a warning
        max_age_seconds: Records older than this are dropped
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        slow_query_threshold_ms: float = SLOW_QUERY_THRESHOLD_MS,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.slow_query_threshold_ms = slow_query_threshold_ms
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._records: deque[CallRecord] = deque()
        self._lock = threading.Lock()

    @contextmanager
    def track(self, operation: str) -> Iterator[None]:
        """Time the enclosed block; failures are logged and re-raised."""
        start = self._clock()
        try:
            yield
        except Exception as e:
            duration_ms = (self._clock() - start) * 1000
            self._record(CallRecord(operation, start, duration_ms, "error", str(e)))
            logger.error(f"{operation} failed after {duration_ms:.2f}ms: {e}")
            raise

        duration_ms = (self._clock() - start) * 1000
        self._record(CallRecord(operation, start, duration_ms, "completed"))
        logger.debug(f"{operation} completed in {duration_ms:.2f}ms")
        if duration_ms > self.slow_query_threshold_ms:
            logger.warning(
                f"Slow query detected: {operation} took {duration_ms:.2f}ms "
                f"(threshold {self.slow_query_threshold_ms:.0f}ms)"
            )

    def measure(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``fn(*args, **kwargs)`` under :meth:`track`."""
        with self.track(operation):
            return fn(*args, **kwargs)

    def _record(self, record: CallRecord) -> None:
        with self._lock:
            self._records.append(record)
            self._evict_older_than(self.max_age_seconds)

    def _evict_older_than(self, max_age: float) -> int:
        # Records land in finish order, so a nested call can sit ahead of its caller
        cutoff = self._clock() - max_age
        kept = deque(r for r in self._records if r.started_at >= cutoff)
        removed = len(self._records) - len(kept)
        self._records = kept
        return removed

    def clear_old_metrics(self, max_age: float | None = None) -> int:
        """Drop records started more than ``max_age`` seconds ago."""
        with self._lock:
            return self._evict_older_than(
                self.max_age_seconds if max_age is None else max_age
            )

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def get_metrics(self, operation: str | None = None) -> dict[str, Any]:
        """Aggregate timings over retained records, optionally for one operation.

        Durations are in milliseconds and cover completed calls only.
        """
        with self._lock:
            records = [
                r for r in self._records if operation is None or r.operation == operation
            ]

        completed = [r.duration_ms for r in records if r.status == "completed"]
        errors = sum(1 for r in records if r.status == "error")
        slow = sum(1 for d in completed if d > self.slow_query_threshold_ms)

        if not completed:
            return {
                "total_calls": len(records),
                "completed_calls": 0,
                "error_calls": errors,
                "slow_calls": 0,
                "average_duration_ms": 0.0,
                "min_duration_ms": 0.0,
                "max_duration_ms": 0.0,
            }

        return {
            "total_calls": len(records),
            "completed_calls": len(completed),
            "error_calls": errors,
            "slow_calls": slow,
            "average_duration_ms": round(sum(completed) / len(completed), 2),
            "min_duration_ms": round(min(completed), 2),
            "max_duration_ms": round(max(completed), 2),
        }

    def operations(self) -> list[str]:
        with self._lock:
            return sorted({r.operation for r in self._records})
