"""Plumbing shared by the read-side analytics services."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..cache import QueryCache
from ..errors import DatabaseError, ValidationError
from ..monitor import PerformanceMonitor

T = TypeVar("T")


def require_player_name(player_name: str | None) -> str:
    """Stripped player name, or ValidationError when blank."""
    if player_name is None or not str(player_name).strip():
        raise ValidationError("Player name is required", field="player_name")
    return str(player_name).strip()


class AnalyticsService:
    """Base for services that read sessions through the cache and monitor.

    Every public call is keyed by operation name plus parameters. On a
    miss the computation runs inside the performance monitor and only a
    successful result is stored.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: QueryCache | None = None,
        monitor: PerformanceMonitor | None = None,
    ):
        self._factory = session_factory
        self.cache = cache if cache is not None else QueryCache()
        self.monitor = monitor if monitor is not None else PerformanceMonitor()

    def _run(
        self,
        operation: str,
        params: dict[str, Any],
        compute: Callable[[], T],
        ttl: float | None = None,
    ) -> T:
        label = f"{type(self).__name__}.{operation}"
        call_name = f"{label}({', '.join(f'{k}={v}' for k, v in params.items())})"

        def guarded() -> T:
            try:
                return compute()
            except SQLAlchemyError as e:
                raise DatabaseError(operation, e) from e

        return self.cache.get_or_compute(
            label, params, lambda: self.monitor.measure(call_name, guarded), ttl
        )
