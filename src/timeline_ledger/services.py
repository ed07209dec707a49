"""Wiring: build every component from a LedgerConfig."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Engine
from sqlalchemy.orm import sessionmaker

from .analytics import LeaderboardRanker, ProgressionAnalyzer, StatisticsAggregator
from .cache import QueryCache
from .config import LedgerConfig, StatisticsPolicy
from .db.session import create_session_factory, init_db
from .ledger import SessionLedger
from .monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


@dataclass
class LedgerServices:
    engine: Engine
    session_factory: sessionmaker
    cache: QueryCache
    monitor: PerformanceMonitor
    policy: StatisticsPolicy
    ledger: SessionLedger
    statistics: StatisticsAggregator
    progression: ProgressionAnalyzer
    leaderboard: LeaderboardRanker

    def dispose(self) -> None:
        self.engine.dispose()


def build_engine_components(
    config: LedgerConfig, clock: Callable[[], datetime] | None = None
) -> LedgerServices:
    """Create the engine, ensure the schema exists and wire every service.

    All read-side services share one cache and one monitor.
    """
    config.validate()

    engine = init_db(config.database.url, echo=config.database.echo)
    factory = create_session_factory(engine)
    cache = QueryCache(
        max_size=config.cache.max_size, default_ttl=config.cache.default_ttl_seconds
    )
    monitor = PerformanceMonitor(
        slow_query_threshold_ms=config.monitor.slow_query_threshold_ms,
        max_age_seconds=config.monitor.metrics_max_age_seconds,
    )
    policy = StatisticsPolicy(config.statistics.mode)

    progression = ProgressionAnalyzer(factory, cache, monitor)
    services = LedgerServices(
        engine=engine,
        session_factory=factory,
        cache=cache,
        monitor=monitor,
        policy=policy,
        ledger=SessionLedger(factory, clock=clock),
        statistics=StatisticsAggregator(
            factory, policy, cache, monitor, clock=clock, progression=progression
        ),
        progression=progression,
        leaderboard=LeaderboardRanker(factory, cache, monitor, clock=clock),
    )
    logger.info(
        f"Ledger services ready (database {engine.url.render_as_string(hide_password=True)}, "
        f"statistics mode {policy.mode})"
    )
    return services
