"""Configuration management for timeline_ledger."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import tomllib

# Statistics computation modes:
#   row    - always aggregate fetched rows in process
#   store  - always push aggregation into the database
#   hybrid - "basic" metrics in process, "advanced" metrics in the database
VALID_STATISTICS_MODES = {"row", "store", "hybrid"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
STATISTICS_MODE_ENV = "TIMELINE_LEDGER_STATISTICS_MODE"


class ConfigError(Exception):
    """Configuration error."""

    pass


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///timeline_ledger.db"
    echo: bool = False


@dataclass
class CacheConfig:
    max_size: int = 1000
    default_ttl_seconds: float = 300.0


@dataclass
class MonitorConfig:
    slow_query_threshold_ms: float = 1000.0
    metrics_max_age_seconds: float = 3600.0


@dataclass
class StatisticsConfig:
    mode: str = "hybrid"


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class LedgerConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    statistics: StatisticsConfig = field(default_factory=StatisticsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Validate configuration, raising ConfigError if invalid."""
        if not self.database.url:
            raise ConfigError("Configuration requires a [database] url")

        if self.cache.max_size < 1:
            raise ConfigError(
                f"Invalid cache max_size {self.cache.max_size}. Must be at least 1"
            )
        if self.cache.default_ttl_seconds <= 0:
            raise ConfigError(
                f"Invalid cache default_ttl_seconds {self.cache.default_ttl_seconds}. "
                "Must be positive"
            )

        if self.monitor.slow_query_threshold_ms <= 0:
            raise ConfigError("Invalid monitor slow_query_threshold_ms. Must be positive")
        if self.monitor.metrics_max_age_seconds <= 0:
            raise ConfigError("Invalid monitor metrics_max_age_seconds. Must be positive")

        if self.statistics.mode not in VALID_STATISTICS_MODES:
            raise ConfigError(
                f"Invalid statistics mode '{self.statistics.mode}'. "
                f"Must be one of: {', '.join(sorted(VALID_STATISTICS_MODES))}"
            )

        if self.logging.level.upper() not in VALID_LOG_LEVELS:
            raise ConfigError(
                f"Invalid logging level '{self.logging.level}'. "
                f"Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )

    def get_log_level(self) -> int:
        return getattr(logging, self.logging.level.upper())


class StatisticsPolicy:
    """Decides which aggregation strategy serves a metric request.

    ``requested_type`` is ``"basic"`` for breakdowns and headline stats,
    ``"advanced"`` where percentile and variance figures are needed and for
    game-wide views that scan every player's sessions.
    """

    def __init__(self, mode: str = "hybrid"):
        if mode not in VALID_STATISTICS_MODES:
            raise ConfigError(
                f"Invalid statistics mode '{mode}'. "
                f"Must be one of: {', '.join(sorted(VALID_STATISTICS_MODES))}"
            )
        self.mode = mode

    def should_use_advanced_strategy(self, metric_family: str, requested_type: str) -> bool:
        """True when the store-side aggregation strategy should run."""
        if metric_family != "statistics":
            return False
        if self.mode == "store":
            return True
        if self.mode == "row":
            return False
        return requested_type == "advanced"

    def __call__(self, metric_family: str, requested_type: str) -> bool:
        return self.should_use_advanced_strategy(metric_family, requested_type)

    def __repr__(self) -> str:
        return f"StatisticsPolicy(mode={self.mode!r})"


def load_config(config_path: Path) -> LedgerConfig:
    """Load configuration from TOML file."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    db_data = data.get("database", {})
    database = DatabaseConfig(
        url=db_data.get("url", DatabaseConfig.url),
        echo=bool(db_data.get("echo", False)),
    )

    cache_data = data.get("cache", {})
    cache = CacheConfig(
        max_size=int(cache_data.get("max_size", CacheConfig.max_size)),
        default_ttl_seconds=float(
            cache_data.get("default_ttl_seconds", CacheConfig.default_ttl_seconds)
        ),
    )

    monitor_data = data.get("monitor", {})
    monitor = MonitorConfig(
        slow_query_threshold_ms=float(
            monitor_data.get("slow_query_threshold_ms", MonitorConfig.slow_query_threshold_ms)
        ),
        metrics_max_age_seconds=float(
            monitor_data.get("metrics_max_age_seconds", MonitorConfig.metrics_max_age_seconds)
        ),
    )

    stats_data = data.get("statistics", {})
    statistics = StatisticsConfig(
        mode=os.environ.get(STATISTICS_MODE_ENV)
        or stats_data.get("mode", StatisticsConfig.mode),
    )

    logging_data = data.get("logging", {})
    logging_config = LoggingConfig(level=logging_data.get("level", LoggingConfig.level))

    return LedgerConfig(
        database=database,
        cache=cache,
        monitor=monitor,
        statistics=statistics,
        logging=logging_config,
    )


def get_default_config_path() -> Path:
    """Get the default config file path."""
    return Path.home() / ".timeline_ledger" / "config.toml"


def default_config() -> LedgerConfig:
    """Built-in defaults, with the statistics mode environment override applied."""
    config = LedgerConfig()
    mode = os.environ.get(STATISTICS_MODE_ENV)
    if mode:
        config.statistics.mode = mode
    return config
