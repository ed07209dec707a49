"""Derived statistics values.

These are computed on demand (or served from cache) and never persisted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class _Serializable:
    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class PlayerStatistics(_Serializable):
    player_name: str
    total_games_played: int = 0
    total_games_won: int = 0
    total_games_lost: int = 0
    total_games_abandoned: int = 0
    total_score: int = 0
    total_moves: int = 0
    total_correct_moves: int = 0
    total_incorrect_moves: int = 0
    total_play_time_seconds: int = 0
    average_score_per_game: float = 0.0
    average_accuracy: float = 0.0
    best_score: int = 0
    worst_score: int = 0
    average_game_duration_seconds: int = 0
    win_rate: float = 0.0
    last_played_at: datetime | None = None
    first_played_at: datetime | None = None


@dataclass
class ScoreDistribution(_Serializable):
    """Spread of a player's session scores (sample statistics)."""

    median_score: float = 0.0
    q1_score: float = 0.0
    q3_score: float = 0.0
    score_stddev: float = 0.0
    score_variance: float = 0.0


@dataclass
class AdvancedPlayerStatistics(PlayerStatistics):
    median_score: float = 0.0
    q1_score: float = 0.0
    q3_score: float = 0.0
    score_stddev: float = 0.0
    score_variance: float = 0.0

    @classmethod
    def combine(
        cls, basic: PlayerStatistics, distribution: ScoreDistribution
    ) -> AdvancedPlayerStatistics:
        return cls(**asdict(basic), **asdict(distribution))


@dataclass
class CategoryStatistics(_Serializable):
    category: str
    games_played: int = 0
    games_won: int = 0
    total_score: int = 0
    total_moves: int = 0
    correct_moves: int = 0
    incorrect_moves: int = 0
    average_score: float = 0.0
    accuracy: float = 0.0
    best_score: int = 0
    average_game_duration_seconds: int = 0
    win_rate: float = 0.0
    last_played_at: datetime | None = None


@dataclass
class DifficultyStatistics(_Serializable):
    difficulty_level: int
    games_played: int = 0
    games_won: int = 0
    total_score: int = 0
    total_moves: int = 0
    correct_moves: int = 0
    incorrect_moves: int = 0
    average_score: float = 0.0
    accuracy: float = 0.0
    best_score: int = 0
    average_game_duration_seconds: int = 0
    win_rate: float = 0.0
    last_played_at: datetime | None = None


@dataclass
class DailyStatistics(_Serializable):
    date: date
    games_played: int = 0
    games_won: int = 0
    total_score: int = 0
    total_moves: int = 0
    correct_moves: int = 0
    incorrect_moves: int = 0
    average_score: float = 0.0
    accuracy: float = 0.0
    total_play_time_seconds: int = 0
    win_rate: float = 0.0


@dataclass
class WeeklyStatistics(_Serializable):
    year: int
    week: int
    games_played: int = 0
    games_won: int = 0
    total_score: int = 0
    total_moves: int = 0
    correct_moves: int = 0
    incorrect_moves: int = 0
    average_score: float = 0.0
    accuracy: float = 0.0
    total_play_time_seconds: int = 0
    win_rate: float = 0.0

    @property
    def week_key(self) -> str:
        return f"{self.year}-W{self.week:02d}"


@dataclass
class FavoriteCategory(_Serializable):
    category: str
    play_count: int


@dataclass
class FavoriteDifficulty(_Serializable):
    difficulty_level: int = 1
    play_count: int = 0


@dataclass
class ProgressionEntry(_Serializable):
    game_number: int
    date: datetime | None
    score: int
    difficulty_level: int
    total_moves: int
    correct_moves: int
    accuracy: float
    duration_seconds: int


@dataclass
class ImprovementSummary(_Serializable):
    score_improvement: float = 0.0
    accuracy_improvement: float = 0.0
    recent_avg_score: float = 0.0
    early_avg_score: float = 0.0
    recent_avg_accuracy: float = 0.0
    early_avg_accuracy: float = 0.0


@dataclass
class ProgressionReport(_Serializable):
    player_name: str
    total_games: int = 0
    progression: list[ProgressionEntry] = field(default_factory=list)
    improvement: ImprovementSummary = field(default_factory=ImprovementSummary)


@dataclass
class LeaderboardEntry(_Serializable):
    player_name: str
    games_played: int
    avg_score: float
    best_score: int
    total_correct_moves: int
    total_moves: int
    accuracy_percentage: float
    rank: int = 0


@dataclass
class SessionMoveStats(_Serializable):
    total_moves: int = 0
    correct_moves: int = 0
    incorrect_moves: int = 0
    accuracy: float = 0.0
    average_move_time: float = 0.0
    fastest_move: int = 0
    slowest_move: int = 0
    moves_with_timing: int = 0


@dataclass
class PlayerSummary(_Serializable):
    """Everything a profile page shows for one player."""

    player_name: str
    overview: PlayerStatistics
    favorite_categories: list[FavoriteCategory] = field(default_factory=list)
    favorite_difficulty: FavoriteDifficulty = field(default_factory=FavoriteDifficulty)
    category_statistics: list[CategoryStatistics] = field(default_factory=list)
    difficulty_statistics: list[DifficultyStatistics] = field(default_factory=list)
    total_completed_games: int = 0
    improvement: ImprovementSummary = field(default_factory=ImprovementSummary)
    last_30_days: list[DailyStatistics] = field(default_factory=list)
    last_12_weeks: list[WeeklyStatistics] = field(default_factory=list)


@dataclass
class PlayerComparison(_Serializable):
    players: list[str]
    statistics: list[PlayerStatistics]
    best_score: int = 0
    highest_win_rate: float = 0.0
    most_games: int = 0

    @property
    def total_players(self) -> int:
        return len(self.players)


@dataclass
class PlayerRankings(_Serializable):
    """A player's 1-based position on each board; None where unranked."""

    player_name: str
    global_rank: int | None = None
    daily_rank: int | None = None
    weekly_rank: int | None = None
    categories: dict[str, int] = field(default_factory=dict)


@dataclass
class LeaderboardSummary(_Serializable):
    total_players: int = 0
    total_category_entries: int = 0
    daily_active_players: int = 0
    weekly_active_players: int = 0
    highest_score: int = 0
    average_score: float = 0.0


@dataclass
class GameTotals(_Serializable):
    """Counts and averages over every session in scope, all players together.

    Averages cover the sessions that carry the value: durations skip
    sessions still in progress, accuracy skips sessions without moves.
    """

    total_games: int = 0
    completed_games: int = 0
    abandoned_games: int = 0
    unique_players: int = 0
    completion_rate: float = 0.0
    average_score: float = 0.0
    average_duration_seconds: int = 0
    average_moves: float = 0.0
    average_accuracy: float = 0.0
    best_score: int = 0
    worst_score: int = 0


@dataclass
class _Performance(_Serializable):
    games_played: int = 0
    games_won: int = 0
    win_rate: float = 0.0
    average_score: float = 0.0
    average_duration_seconds: int = 0
    average_accuracy: float = 0.0


@dataclass
class DifficultyPerformance(_Performance):
    difficulty_level: int = 1


@dataclass
class CategoryPerformance(_Performance):
    category: str = ""


@dataclass
class TopPlayer(_Serializable):
    player_name: str
    games_played: int = 0
    games_won: int = 0
    win_rate: float = 0.0
    average_score: float = 0.0
    best_score: int = 0
    average_accuracy: float = 0.0


@dataclass
class TrendPoint(_Serializable):
    """Activity in one period, keyed by the UTC date the period starts on."""

    period_start: date
    games_played: int = 0
    active_players: int = 0
    completed_games: int = 0
    completion_rate: float = 0.0
    average_score: float = 0.0
    average_duration_seconds: int = 0
    average_accuracy: float = 0.0


@dataclass
class GameOverview(_Serializable):
    overall: GameTotals = field(default_factory=GameTotals)
    difficulty_distribution: list[DifficultyPerformance] = field(default_factory=list)
    category_performance: list[CategoryPerformance] = field(default_factory=list)
    recent_activity: list[TrendPoint] = field(default_factory=list)


@dataclass
class DifficultyAnalytics(_Serializable):
    difficulty_level: int
    overview: GameTotals = field(default_factory=GameTotals)
    category_performance: list[CategoryPerformance] = field(default_factory=list)
    top_players: list[TopPlayer] = field(default_factory=list)
    recent_activity: list[TrendPoint] = field(default_factory=list)


@dataclass
class CategoryAnalytics(_Serializable):
    category: str
    overview: GameTotals = field(default_factory=GameTotals)
    difficulty_performance: list[DifficultyPerformance] = field(default_factory=list)
    top_players: list[TopPlayer] = field(default_factory=list)
    recent_activity: list[TrendPoint] = field(default_factory=list)


@dataclass
class GameTrends(_Serializable):
    days: int
    interval: str
    trends: list[TrendPoint] = field(default_factory=list)
