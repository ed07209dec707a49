"""Read-side analytics: statistics, progression and leaderboards."""

from .aggregator import StatisticsAggregator
from .formulas import accuracy, percentile, round2, win_rate
from .leaderboard import LeaderboardRanker, rank_entries
from .progression import ProgressionAnalyzer, build_progression
from .strategies import AggregationStrategy, RowAggregationStrategy, StoreAggregationStrategy
from .types import (
    AdvancedPlayerStatistics,
    CategoryAnalytics,
    CategoryStatistics,
    DailyStatistics,
    DifficultyAnalytics,
    DifficultyStatistics,
    GameOverview,
    GameTrends,
    LeaderboardEntry,
    PlayerStatistics,
    ProgressionReport,
    WeeklyStatistics,
)

__all__ = [
    "AdvancedPlayerStatistics",
    "AggregationStrategy",
    "CategoryAnalytics",
    "CategoryStatistics",
    "DailyStatistics",
    "DifficultyAnalytics",
    "DifficultyStatistics",
    "GameOverview",
    "GameTrends",
    "LeaderboardEntry",
    "LeaderboardRanker",
    "PlayerStatistics",
    "ProgressionAnalyzer",
    "ProgressionReport",
    "RowAggregationStrategy",
    "StatisticsAggregator",
    "StoreAggregationStrategy",
    "WeeklyStatistics",
    "accuracy",
    "build_progression",
    "percentile",
    "rank_entries",
    "round2",
    "win_rate",
]
