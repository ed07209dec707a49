"""Player and game-wide statistics aggregation.

The statistics policy picks one ``AggregationStrategy`` per call: "basic"
requests (headline numbers and breakdowns) and "advanced" requests
(percentiles and variance, and game-wide views that scan every player)
may be served by different strategies.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import sessionmaker

from ..cache import QueryCache
from ..config import StatisticsPolicy
from ..db.session import read_scope
from ..errors import ValidationError
from ..monitor import PerformanceMonitor
from ..utils.timeutil import start_of_day, utc_now
from .progression import ProgressionAnalyzer
from .service import AnalyticsService, require_player_name
from .strategies import AggregationStrategy, RowAggregationStrategy, StoreAggregationStrategy
from .types import (
    AdvancedPlayerStatistics,
    CategoryAnalytics,
    CategoryStatistics,
    DailyStatistics,
    DifficultyAnalytics,
    DifficultyStatistics,
    FavoriteCategory,
    FavoriteDifficulty,
    GameOverview,
    GameTrends,
    PlayerComparison,
    PlayerStatistics,
    PlayerSummary,
    WeeklyStatistics,
)

logger = logging.getLogger(__name__)

METRIC_FAMILY = "statistics"
MAX_COMPARED_PLAYERS = 10
TOP_PLAYERS_LIMIT = 20
RECENT_ACTIVITY_DAYS = 30
MAX_TREND_DAYS = 365
TREND_INTERVALS = ("day", "week", "month")


def _positive(value: int, name: str) -> int:
    if value < 1:
        raise ValidationError(f"{name} must be at least 1", field=name)
    return value


def _difficulty(level: int) -> int:
    if not 1 <= level <= 5:
        raise ValidationError(
            "difficulty_level must be between 1 and 5", field="difficulty_level"
        )
    return level


class StatisticsAggregator(AnalyticsService):
    """Computes per-player statistics over game sessions.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the store
        policy: Chooses between in-process and store-side aggregation
        cache: Result cache shared with the other analytics services
        monitor: Performance monitor wrapping every computation
        clock: Returns the current aware UTC time (for day/week windows)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        policy: StatisticsPolicy | None = None,
        cache: QueryCache | None = None,
        monitor: PerformanceMonitor | None = None,
        clock: Callable[[], datetime] | None = None,
        progression: ProgressionAnalyzer | None = None,
    ):
        super().__init__(session_factory, cache, monitor)
        self.policy = policy if policy is not None else StatisticsPolicy()
        self._clock = clock or utc_now
        self.progression = progression or ProgressionAnalyzer(
            session_factory, self.cache, self.monitor
        )
        self._row_strategy = RowAggregationStrategy()
        self._store_strategy = StoreAggregationStrategy()

    def strategy_for(self, requested_type: str) -> AggregationStrategy:
        if self.policy.should_use_advanced_strategy(METRIC_FAMILY, requested_type):
            return self._store_strategy
        return self._row_strategy

    def _aggregate(
        self,
        operation: str,
        requested_type: str,
        params: dict[str, Any],
        fn: Callable[..., Any],
    ) -> Any:
        strategy = self.strategy_for(requested_type)
        logger.debug(f"{operation} served by {strategy.name} aggregation")

        def compute():
            with read_scope(self._factory) as db:
                return fn(strategy, db)

        return self._run(operation, params, compute)

    # ------------------------------------------------------------------
    # Player
    # ------------------------------------------------------------------

    def get_player_statistics(self, player_name: str) -> PlayerStatistics:
        """Headline statistics; the zero variant when the player has no sessions."""
        player_name = require_player_name(player_name)
        return self._aggregate(
            "get_player_statistics",
            "basic",
            {"player_name": player_name},
            lambda s, db: s.player_statistics(db, player_name),
        )

    def get_player_advanced_statistics(self, player_name: str) -> AdvancedPlayerStatistics:
        """Headline statistics plus quartiles, standard deviation and variance."""
        player_name = require_player_name(player_name)
        return self._aggregate(
            "get_player_advanced_statistics",
            "advanced",
            {"player_name": player_name},
            lambda s, db: AdvancedPlayerStatistics.combine(
                s.player_statistics(db, player_name), s.score_distribution(db, player_name)
            ),
        )

    # ------------------------------------------------------------------
    # Breakdowns
    # ------------------------------------------------------------------

    def get_category_statistics(
        self, player_name: str, category: str | None = None
    ) -> list[CategoryStatistics]:
        """Per-category buckets, most played first.

        A session with several categories is counted in full in each of them,
        so bucket totals can exceed the player's session count.
        """
        player_name = require_player_name(player_name)
        return self._aggregate(
            "get_category_statistics",
            "basic",
            {"player_name": player_name, "category": category},
            lambda s, db: s.category_statistics(db, player_name, category),
        )

    def get_difficulty_statistics(
        self, player_name: str, difficulty_level: int | None = None
    ) -> list[DifficultyStatistics]:
        player_name = require_player_name(player_name)
        if difficulty_level is not None:
            _difficulty(difficulty_level)
        return self._aggregate(
            "get_difficulty_statistics",
            "basic",
            {"player_name": player_name, "difficulty_level": difficulty_level},
            lambda s, db: s.difficulty_statistics(db, player_name, difficulty_level),
        )

    def get_daily_statistics(self, player_name: str, days: int = 30) -> list[DailyStatistics]:
        """Buckets by UTC date of session end over the last ``days`` days, newest first."""
        player_name = require_player_name(player_name)
        since = self._clock() - timedelta(days=_positive(days, "days"))
        return self._aggregate(
            "get_daily_statistics",
            "basic",
            {"player_name": player_name, "days": days},
            lambda s, db: s.daily_statistics(db, player_name, since),
        )

    def get_weekly_statistics(self, player_name: str, weeks: int = 12) -> list[WeeklyStatistics]:
        """Buckets by ISO week of session end over the last ``weeks`` weeks, newest first."""
        player_name = require_player_name(player_name)
        since = self._clock() - timedelta(weeks=_positive(weeks, "weeks"))
        return self._aggregate(
            "get_weekly_statistics",
            "basic",
            {"player_name": player_name, "weeks": weeks},
            lambda s, db: s.weekly_statistics(db, player_name, since),
        )

    def get_favorite_categories(self, player_name: str, limit: int = 5) -> list[FavoriteCategory]:
        player_name = require_player_name(player_name)
        _positive(limit, "limit")
        return self._aggregate(
            "get_favorite_categories",
            "basic",
            {"player_name": player_name, "limit": limit},
            lambda s, db: s.favorite_categories(db, player_name, limit),
        )

    def get_favorite_difficulty(self, player_name: str) -> FavoriteDifficulty:
        player_name = require_player_name(player_name)
        return self._aggregate(
            "get_favorite_difficulty",
            "basic",
            {"player_name": player_name},
            lambda s, db: s.favorite_difficulty(db, player_name),
        )

    # ------------------------------------------------------------------
    # Composite views
    # ------------------------------------------------------------------

    def get_player_summary(self, player_name: str) -> PlayerSummary:
        """Overview, favorites, breakdowns, trend and recent activity in one value."""
        player_name = require_player_name(player_name)
        with self.monitor.track(f"StatisticsAggregator.get_player_summary({player_name})"):
            progression = self.progression.get_player_progression(player_name)
            summary = PlayerSummary(
                player_name=player_name,
                overview=self.get_player_statistics(player_name),
                favorite_categories=self.get_favorite_categories(player_name),
                favorite_difficulty=self.get_favorite_difficulty(player_name),
                category_statistics=self.get_category_statistics(player_name),
                difficulty_statistics=self.get_difficulty_statistics(player_name),
                total_completed_games=progression.total_games,
                improvement=progression.improvement,
                last_30_days=self.get_daily_statistics(player_name, 30),
                last_12_weeks=self.get_weekly_statistics(player_name, 12),
            )
        logger.info(f"Built statistics summary for player {player_name}")
        return summary

    def compare_players(self, player_names: Sequence[str]) -> PlayerComparison:
        """Side-by-side headline statistics for up to ten players.

        Raises:
            ValidationError: No usable names, or more than ten
        """
        names = [str(n).strip() for n in player_names or [] if n and str(n).strip()]
        if not names:
            raise ValidationError(
                "At least one valid player name is required", field="player_names"
            )
        if len(names) > MAX_COMPARED_PLAYERS:
            raise ValidationError(
                f"Maximum {MAX_COMPARED_PLAYERS} players can be compared at once",
                field="player_names",
            )

        stats = [self.get_player_statistics(name) for name in names]
        return PlayerComparison(
            players=names,
            statistics=stats,
            best_score=max(s.best_score for s in stats),
            highest_win_rate=max(s.win_rate for s in stats),
            most_games=max(s.total_games_played for s in stats),
        )

    # ------------------------------------------------------------------
    # Game-wide views
    # ------------------------------------------------------------------

    def _recent_since(self) -> datetime:
        return start_of_day(self._clock()) - timedelta(days=RECENT_ACTIVITY_DAYS)

    def get_game_overview(self) -> GameOverview:
        """Totals across all players, difficulty and category splits, last 30 days."""
        since = self._recent_since()
        return self._aggregate(
            "get_game_overview",
            "advanced",
            {},
            lambda s, db: GameOverview(
                overall=s.game_totals(db),
                difficulty_distribution=s.difficulty_performance(db),
                category_performance=s.category_performance(db),
                recent_activity=s.game_trends(db, since)[:RECENT_ACTIVITY_DAYS],
            ),
        )

    def get_difficulty_analytics(self, difficulty_level: int) -> DifficultyAnalytics:
        """Everything played at one difficulty level, with its top 20 players."""
        level = _difficulty(difficulty_level)
        since = self._recent_since()
        return self._aggregate(
            "get_difficulty_analytics",
            "advanced",
            {"difficulty_level": level},
            lambda s, db: DifficultyAnalytics(
                difficulty_level=level,
                overview=s.game_totals(db, difficulty_level=level),
                category_performance=s.category_performance(db, difficulty_level=level),
                top_players=s.top_players(db, difficulty_level=level, limit=TOP_PLAYERS_LIMIT),
                recent_activity=s.game_trends(db, since, difficulty_level=level)[
                    :RECENT_ACTIVITY_DAYS
                ],
            ),
        )

    def get_category_analytics(self, category: str) -> CategoryAnalytics:
        """Every session tagged with ``category``, with its top 20 players."""
        if category is None or not str(category).strip():
            raise ValidationError("Category is required", field="category")
        category = str(category).strip()
        since = self._recent_since()
        return self._aggregate(
            "get_category_analytics",
            "advanced",
            {"category": category},
            lambda s, db: CategoryAnalytics(
                category=category,
                overview=s.game_totals(db, category=category),
                difficulty_performance=s.difficulty_performance(db, category=category),
                top_players=s.top_players(db, category=category, limit=TOP_PLAYERS_LIMIT),
                recent_activity=s.game_trends(db, since, category=category)[
                    :RECENT_ACTIVITY_DAYS
                ],
            ),
        )

    def get_game_trends(self, days: int = 30, interval: str = "day") -> GameTrends:
        """Activity per day, ISO week or month over the last ``days`` days, newest first.

        Raises:
            ValidationError: ``days`` outside 1-365 or an unknown interval
        """
        if not 1 <= days <= MAX_TREND_DAYS:
            raise ValidationError(
                f"days must be between 1 and {MAX_TREND_DAYS}", field="days"
            )
        if interval not in TREND_INTERVALS:
            raise ValidationError(
                f"interval must be one of: {', '.join(TREND_INTERVALS)}", field="interval"
            )
        since = start_of_day(self._clock()) - timedelta(days=days)
        return self._aggregate(
            "get_game_trends",
            "advanced",
            {"days": days, "interval": interval},
            lambda s, db: GameTrends(
                days=days, interval=interval, trends=s.game_trends(db, since, interval)
            ),
        )
