"""Aggregation strategies for player and game-wide statistics.

Both strategies fill the same intermediate tallies and share the
finalization code, so they return identical results for the same rows:

* ``RowAggregationStrategy`` fetches session rows and sums in Python.
* ``StoreAggregationStrategy`` pushes grouping into SQL (``GROUP BY`` with
  count/sum/min/max, sums of squares for variance and a ``ROW_NUMBER()``
  window for percentiles).

Every method takes an open SQLAlchemy ``Session``; the caller owns its scope.
"""

from __future__ import annotations

import logging
import math
import statistics
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from fractions import Fraction

from sqlalchemy import Float, case, cast, func, select
from sqlalchemy.orm import Session

from ..db.models import GameSession, SessionCategory
from ..utils.timeutil import ensure_utc, iso_week_key, period_start, utc_date
from .formulas import (
    accuracy,
    is_lost,
    is_won,
    percentage,
    percentile,
    percentile_bounds,
    round2,
    round_half_up_int,
    safe_average,
    win_rate,
)
from .types import (
    CategoryPerformance,
    CategoryStatistics,
    DailyStatistics,
    DifficultyPerformance,
    DifficultyStatistics,
    FavoriteCategory,
    FavoriteDifficulty,
    GameTotals,
    PlayerStatistics,
    ScoreDistribution,
    TopPlayer,
    TrendPoint,
    WeeklyStatistics,
)

logger = logging.getLogger(__name__)

QUARTILES = (0.25, 0.5, 0.75)


@dataclass
class BucketTally:
    """Running sums for one bucket (category, difficulty, day or week)."""

    games_played: int = 0
    games_won: int = 0
    total_score: int = 0
    total_moves: int = 0
    correct_moves: int = 0
    incorrect_moves: int = 0
    total_duration: int = 0
    best_score: int = 0
    last_played_at: datetime | None = None

    def add_session(self, row) -> None:
        score = row.score or 0
        self.games_played += 1
        if is_won(row.status, score):
            self.games_won += 1
        self.total_score += score
        self.total_moves += row.total_moves or 0
        self.correct_moves += row.correct_moves or 0
        self.incorrect_moves += row.incorrect_moves or 0
        self.total_duration += row.duration_seconds or 0
        self.best_score = max(self.best_score, score)
        end_time = ensure_utc(row.end_time)
        if end_time is not None and (
            self.last_played_at is None or end_time > self.last_played_at
        ):
            self.last_played_at = end_time

    def merge(self, other: BucketTally) -> None:
        self.games_played += other.games_played
        self.games_won += other.games_won
        self.total_score += other.total_score
        self.total_moves += other.total_moves
        self.correct_moves += other.correct_moves
        self.incorrect_moves += other.incorrect_moves
        self.total_duration += other.total_duration
        self.best_score = max(self.best_score, other.best_score)
        if other.last_played_at is not None and (
            self.last_played_at is None or other.last_played_at > self.last_played_at
        ):
            self.last_played_at = other.last_played_at

    @classmethod
    def from_row(cls, row) -> BucketTally:
        """Build a tally from one grouped SQL row (see ``_tally_columns``)."""
        return cls(
            games_played=int(row.games_played or 0),
            games_won=int(row.games_won or 0),
            total_score=int(row.total_score or 0),
            total_moves=int(row.total_moves or 0),
            correct_moves=int(row.correct_moves or 0),
            incorrect_moves=int(row.incorrect_moves or 0),
            total_duration=int(row.total_duration or 0),
            best_score=int(row.best_score or 0),
            last_played_at=ensure_utc(row.last_played_at),
        )

    def _common(self) -> dict:
        return {
            "games_played": self.games_played,
            "games_won": self.games_won,
            "total_score": self.total_score,
            "total_moves": self.total_moves,
            "correct_moves": self.correct_moves,
            "incorrect_moves": self.incorrect_moves,
            "average_score": round2(safe_average(self.total_score, self.games_played)),
            "accuracy": accuracy(self.correct_moves, self.total_moves),
            "win_rate": win_rate(self.games_won, self.games_played),
        }

    def _breakdown(self) -> dict:
        return {
            **self._common(),
            "best_score": self.best_score,
            "average_game_duration_seconds": round_half_up_int(
                safe_average(self.total_duration, self.games_played)
            ),
            "last_played_at": self.last_played_at,
        }

    def to_category(self, category: str) -> CategoryStatistics:
        return CategoryStatistics(category=category, **self._breakdown())

    def to_difficulty(self, level: int) -> DifficultyStatistics:
        return DifficultyStatistics(difficulty_level=level, **self._breakdown())

    def to_daily(self, day: date) -> DailyStatistics:
        return DailyStatistics(
            date=day, total_play_time_seconds=self.total_duration, **self._common()
        )

    def to_weekly(self, year: int, week: int) -> WeeklyStatistics:
        return WeeklyStatistics(
            year=year, week=week, total_play_time_seconds=self.total_duration, **self._common()
        )


@dataclass
class PlayerTally:
    """Sums behind ``PlayerStatistics``."""

    games_played: int = 0
    games_won: int = 0
    games_lost: int = 0
    games_abandoned: int = 0
    total_score: int = 0
    total_moves: int = 0
    correct_moves: int = 0
    incorrect_moves: int = 0
    total_duration: int = 0
    best_score: int | None = None
    worst_score: int | None = None
    last_played_at: datetime | None = None
    first_played_at: datetime | None = None

    def to_statistics(self, player_name: str) -> PlayerStatistics:
        if self.games_played == 0:
            return PlayerStatistics(player_name=player_name)

        return PlayerStatistics(
            player_name=player_name,
            total_games_played=self.games_played,
            total_games_won=self.games_won,
            total_games_lost=self.games_lost,
            total_games_abandoned=self.games_abandoned,
            total_score=self.total_score,
            total_moves=self.total_moves,
            total_correct_moves=self.correct_moves,
            total_incorrect_moves=self.incorrect_moves,
            total_play_time_seconds=self.total_duration,
            average_score_per_game=round2(safe_average(self.total_score, self.games_played)),
            average_accuracy=accuracy(self.correct_moves, self.total_moves),
            best_score=self.best_score or 0,
            worst_score=self.worst_score or 0,
            average_game_duration_seconds=round_half_up_int(
                safe_average(self.total_duration, self.games_played)
            ),
            win_rate=win_rate(self.games_won, self.games_played),
            last_played_at=self.last_played_at,
            first_played_at=self.first_played_at,
        )


@dataclass
class GameTally:
    """Running sums for game-wide analytics, across players."""

    games_played: int = 0
    completed_games: int = 0
    abandoned_games: int = 0
    games_won: int = 0
    total_score: int = 0
    total_moves: int = 0
    total_duration: int = 0
    timed_games: int = 0
    accuracy_sum: float = 0.0
    games_with_moves: int = 0
    best_score: int | None = None
    worst_score: int | None = None
    players: set[str] = field(default_factory=set)

    def add_session(self, row) -> None:
        score = row.score or 0
        self.games_played += 1
        if row.status == "completed":
            self.completed_games += 1
        elif row.status == "abandoned":
            self.abandoned_games += 1
        if is_won(row.status, score):
            self.games_won += 1
        self.total_score += score
        self.total_moves += row.total_moves or 0
        if row.duration_seconds is not None:
            self.total_duration += row.duration_seconds
            self.timed_games += 1
        if row.total_moves:
            self.accuracy_sum += (row.correct_moves or 0) / row.total_moves
            self.games_with_moves += 1
        self._bound_scores(score, score)
        self.players.add(row.player_name)

    def _bound_scores(self, best: int | None, worst: int | None) -> None:
        if best is not None:
            self.best_score = best if self.best_score is None else max(self.best_score, best)
        if worst is not None:
            self.worst_score = worst if self.worst_score is None else min(self.worst_score, worst)

    def merge(self, other: GameTally) -> None:
        self.games_played += other.games_played
        self.completed_games += other.completed_games
        self.abandoned_games += other.abandoned_games
        self.games_won += other.games_won
        self.total_score += other.total_score
        self.total_moves += other.total_moves
        self.total_duration += other.total_duration
        self.timed_games += other.timed_games
        self.accuracy_sum += other.accuracy_sum
        self.games_with_moves += other.games_with_moves
        self._bound_scores(other.best_score, other.worst_score)
        self.players |= other.players

    @classmethod
    def from_row(cls, row, player_name: str | None = None) -> GameTally:
        """Build a tally from one grouped SQL row (see ``_game_columns``)."""
        return cls(
            games_played=int(row.games_played or 0),
            completed_games=int(row.completed_games or 0),
            abandoned_games=int(row.abandoned_games or 0),
            games_won=int(row.games_won or 0),
            total_score=int(row.total_score or 0),
            total_moves=int(row.total_moves or 0),
            total_duration=int(row.total_duration or 0),
            timed_games=int(row.timed_games or 0),
            accuracy_sum=float(row.accuracy_sum or 0.0),
            games_with_moves=int(row.games_with_moves or 0),
            best_score=row.best_score,
            worst_score=row.worst_score,
            players=set() if player_name is None else {player_name},
        )

    def _averages(self) -> dict:
        return {
            "average_score": round2(safe_average(self.total_score, self.games_played)),
            "average_duration_seconds": round_half_up_int(
                safe_average(self.total_duration, self.timed_games)
            ),
            "average_accuracy": round2(
                safe_average(self.accuracy_sum, self.games_with_moves) * 100
            ),
        }

    def _performance(self) -> dict:
        return {
            "games_played": self.games_played,
            "games_won": self.games_won,
            "win_rate": win_rate(self.games_won, self.games_played),
            **self._averages(),
        }

    def to_totals(self) -> GameTotals:
        return GameTotals(
            total_games=self.games_played,
            completed_games=self.completed_games,
            abandoned_games=self.abandoned_games,
            unique_players=len(self.players),
            completion_rate=percentage(self.completed_games, self.games_played),
            average_moves=round2(safe_average(self.total_moves, self.games_played)),
            best_score=self.best_score or 0,
            worst_score=self.worst_score or 0,
            **self._averages(),
        )

    def to_difficulty(self, level: int) -> DifficultyPerformance:
        return DifficultyPerformance(difficulty_level=level, **self._performance())

    def to_category(self, category: str) -> CategoryPerformance:
        return CategoryPerformance(category=category, **self._performance())

    def to_player(self, player_name: str) -> TopPlayer:
        averages = self._averages()
        return TopPlayer(
            player_name=player_name,
            games_played=self.games_played,
            games_won=self.games_won,
            win_rate=win_rate(self.games_won, self.games_played),
            average_score=averages["average_score"],
            best_score=self.best_score or 0,
            average_accuracy=averages["average_accuracy"],
        )

    def to_trend(self, start: date) -> TrendPoint:
        averages = self._averages()
        return TrendPoint(
            period_start=start,
            games_played=self.games_played,
            active_players=len(self.players),
            completed_games=self.completed_games,
            completion_rate=percentage(self.completed_games, self.games_played),
            **averages,
        )


def game_scope(difficulty_level: int | None = None, category: str | None = None) -> list:
    """Session filters for a game-wide view narrowed to a difficulty or category."""
    criteria = []
    if difficulty_level is not None:
        criteria.append(GameSession.difficulty_level == difficulty_level)
    if category is not None:
        criteria.append(
            GameSession.id.in_(
                select(SessionCategory.session_id).where(SessionCategory.category == category)
            )
        )
    return criteria


def _as_date(value) -> date:
    # SQLite returns DATE() as ISO text
    if isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(value, datetime):
        return value.date()
    return value


def _sort_performance(results: list[CategoryPerformance]) -> list[CategoryPerformance]:
    return sorted(results, key=lambda p: (-p.games_played, p.category))


def _rank_players(tallies: dict[str, GameTally], limit: int) -> list[TopPlayer]:
    players = [tally.to_player(name) for name, tally in tallies.items()]
    players.sort(key=lambda p: (-p.average_score, p.player_name))
    return players[:limit]


def _trend_points(buckets: dict[date, GameTally]) -> list[TrendPoint]:
    return [buckets[start].to_trend(start) for start in sorted(buckets, reverse=True)]


def _distribution(
    quartiles: tuple[float, float, float], variance: float
) -> ScoreDistribution:
    q1, median, q3 = quartiles
    return ScoreDistribution(
        median_score=round2(median),
        q1_score=round2(q1),
        q3_score=round2(q3),
        score_stddev=round2(math.sqrt(variance)),
        score_variance=round2(variance),
    )


def _sort_categories(results: list[CategoryStatistics]) -> list[CategoryStatistics]:
    return sorted(results, key=lambda s: (-s.games_played, s.category))


def _sort_favorites(counts: Counter) -> list[tuple[str, int]]:
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


class AggregationStrategy(ABC):
    """One way of turning a player's sessions into statistics."""

    name = "abstract"

    @abstractmethod
    def player_statistics(self, db: Session, player_name: str) -> PlayerStatistics:
        """Headline statistics over every session of the player."""

    @abstractmethod
    def score_distribution(self, db: Session, player_name: str) -> ScoreDistribution:
        """Quartiles and sample spread of the player's session scores."""

    @abstractmethod
    def category_statistics(
        self, db: Session, player_name: str, category: str | None = None
    ) -> list[CategoryStatistics]:
        """One bucket per category label; each label gets a full session credit."""

    @abstractmethod
    def difficulty_statistics(
        self, db: Session, player_name: str, difficulty_level: int | None = None
    ) -> list[DifficultyStatistics]:
        """One bucket per difficulty level, ascending."""

    @abstractmethod
    def daily_statistics(
        self, db: Session, player_name: str, since: datetime
    ) -> list[DailyStatistics]:
        """UTC-date buckets of sessions that ended at or after ``since``, newest first."""

    @abstractmethod
    def weekly_statistics(
        self, db: Session, player_name: str, since: datetime
    ) -> list[WeeklyStatistics]:
        """ISO-week buckets of sessions that ended at or after ``since``, newest first."""

    @abstractmethod
    def favorite_categories(
        self, db: Session, player_name: str, limit: int = 5
    ) -> list[FavoriteCategory]:
        """Most played categories."""

    @abstractmethod
    def favorite_difficulty(self, db: Session, player_name: str) -> FavoriteDifficulty:
        """Most played difficulty; level 1 with zero plays when there are none."""

    @abstractmethod
    def game_totals(
        self, db: Session, difficulty_level: int | None = None, category: str | None = None
    ) -> GameTotals:
        """Counts and averages over every player's sessions in scope."""

    @abstractmethod
    def difficulty_performance(
        self, db: Session, category: str | None = None
    ) -> list[DifficultyPerformance]:
        """Game-wide buckets per difficulty level, ascending."""

    @abstractmethod
    def category_performance(
        self, db: Session, difficulty_level: int | None = None
    ) -> list[CategoryPerformance]:
        """Game-wide buckets per category label, most played first."""

    @abstractmethod
    def top_players(
        self,
        db: Session,
        difficulty_level: int | None = None,
        category: str | None = None,
        limit: int = 20,
    ) -> list[TopPlayer]:
        """Players in scope by average score, highest first."""

    @abstractmethod
    def game_trends(
        self,
        db: Session,
        since: datetime,
        interval: str = "day",
        difficulty_level: int | None = None,
        category: str | None = None,
    ) -> list[TrendPoint]:
        """Buckets of sessions started at or after ``since``, newest period first."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class RowAggregationStrategy(AggregationStrategy):
    """Fetch session rows and aggregate them in process."""

    name = "row"

    _SESSION_COLUMNS = (
        GameSession.id,
        GameSession.player_name,
        GameSession.status,
        GameSession.score,
        GameSession.difficulty_level,
        GameSession.total_moves,
        GameSession.correct_moves,
        GameSession.incorrect_moves,
        GameSession.duration_seconds,
        GameSession.start_time,
        GameSession.end_time,
    )

    def _game_sessions(self, db: Session, *criteria):
        return db.execute(select(*self._SESSION_COLUMNS).where(*criteria)).all()

    def _sessions(self, db: Session, player_name: str, *criteria):
        return self._game_sessions(db, GameSession.player_name == player_name, *criteria)

    def _labels(self, db: Session, *criteria) -> dict[str, list[str]]:
        """Category labels per session id for sessions matching ``criteria``."""
        stmt = (
            select(SessionCategory.session_id, SessionCategory.category)
            .join(GameSession, GameSession.id == SessionCategory.session_id)
            .where(*criteria)
        )
        labels: dict[str, list[str]] = {}
        for session_id, label in db.execute(stmt):
            labels.setdefault(session_id, []).append(label)
        return labels

    def _ended_since(self, db: Session, player_name: str, since: datetime):
        return self._sessions(
            db,
            player_name,
            GameSession.end_time.isnot(None),
            GameSession.end_time >= ensure_utc(since),
        )

    def player_statistics(self, db: Session, player_name: str) -> PlayerStatistics:
        tally = PlayerTally()
        for row in self._sessions(db, player_name):
            score = row.score or 0
            tally.games_played += 1
            if is_won(row.status, score):
                tally.games_won += 1
            elif is_lost(row.status, score):
                tally.games_lost += 1
            elif row.status == "abandoned":
                tally.games_abandoned += 1
            tally.total_score += score
            tally.total_moves += row.total_moves or 0
            tally.correct_moves += row.correct_moves or 0
            tally.incorrect_moves += row.incorrect_moves or 0
            tally.total_duration += row.duration_seconds or 0

            if score > 0:
                tally.best_score = score if tally.best_score is None else max(tally.best_score, score)
                tally.worst_score = score if tally.worst_score is None else min(tally.worst_score, score)

            end_time = ensure_utc(row.end_time)
            if end_time and (tally.last_played_at is None or end_time > tally.last_played_at):
                tally.last_played_at = end_time
            start_time = ensure_utc(row.start_time)
            if start_time and (tally.first_played_at is None or start_time < tally.first_played_at):
                tally.first_played_at = start_time

        return tally.to_statistics(player_name)

    def score_distribution(self, db: Session, player_name: str) -> ScoreDistribution:
        scores = sorted(row.score or 0 for row in self._sessions(db, player_name))
        if not scores:
            return ScoreDistribution()

        variance = statistics.variance(scores) if len(scores) > 1 else 0.0
        return _distribution(
            tuple(percentile(scores, fraction) for fraction in QUARTILES), variance
        )

    def category_statistics(
        self, db: Session, player_name: str, category: str | None = None
    ) -> list[CategoryStatistics]:
        rows = self._sessions(db, player_name)
        if not rows:
            return []

        labels = self._labels(db, GameSession.player_name == player_name)
        buckets: dict[str, BucketTally] = {}
        for row in rows:
            for label in labels.get(row.id, []):
                if category is not None and label != category:
                    continue
                buckets.setdefault(label, BucketTally()).add_session(row)

        return _sort_categories([tally.to_category(label) for label, tally in buckets.items()])

    def difficulty_statistics(
        self, db: Session, player_name: str, difficulty_level: int | None = None
    ) -> list[DifficultyStatistics]:
        criteria = []
        if difficulty_level is not None:
            criteria.append(GameSession.difficulty_level == difficulty_level)

        buckets: dict[int, BucketTally] = {}
        for row in self._sessions(db, player_name, *criteria):
            buckets.setdefault(row.difficulty_level, BucketTally()).add_session(row)

        return [buckets[level].to_difficulty(level) for level in sorted(buckets)]

    def daily_statistics(
        self, db: Session, player_name: str, since: datetime
    ) -> list[DailyStatistics]:
        buckets: dict[date, BucketTally] = {}
        for row in self._ended_since(db, player_name, since):
            buckets.setdefault(utc_date(row.end_time), BucketTally()).add_session(row)

        return [buckets[day].to_daily(day) for day in sorted(buckets, reverse=True)]

    def weekly_statistics(
        self, db: Session, player_name: str, since: datetime
    ) -> list[WeeklyStatistics]:
        buckets: dict[tuple[int, int], BucketTally] = {}
        for row in self._ended_since(db, player_name, since):
            buckets.setdefault(iso_week_key(row.end_time), BucketTally()).add_session(row)

        return [
            buckets[key].to_weekly(*key) for key in sorted(buckets, reverse=True)
        ]

    def favorite_categories(
        self, db: Session, player_name: str, limit: int = 5
    ) -> list[FavoriteCategory]:
        stmt = (
            select(SessionCategory.category)
            .join(GameSession, GameSession.id == SessionCategory.session_id)
            .where(GameSession.player_name == player_name)
        )
        counts = Counter(db.execute(stmt).scalars())
        return [
            FavoriteCategory(category=label, play_count=count)
            for label, count in _sort_favorites(counts)[:limit]
        ]

    def favorite_difficulty(self, db: Session, player_name: str) -> FavoriteDifficulty:
        counts = Counter(row.difficulty_level for row in self._sessions(db, player_name))
        if not counts:
            return FavoriteDifficulty()
        level, play_count = min(counts.items(), key=lambda item: (-item[1], item[0]))
        return FavoriteDifficulty(difficulty_level=level, play_count=play_count)

    def game_totals(
        self, db: Session, difficulty_level: int | None = None, category: str | None = None
    ) -> GameTotals:
        tally = GameTally()
        for row in self._game_sessions(db, *game_scope(difficulty_level, category)):
            tally.add_session(row)
        return tally.to_totals()

    def difficulty_performance(
        self, db: Session, category: str | None = None
    ) -> list[DifficultyPerformance]:
        buckets: dict[int, GameTally] = {}
        for row in self._game_sessions(db, *game_scope(category=category)):
            buckets.setdefault(row.difficulty_level, GameTally()).add_session(row)

        return [buckets[level].to_difficulty(level) for level in sorted(buckets)]

    def category_performance(
        self, db: Session, difficulty_level: int | None = None
    ) -> list[CategoryPerformance]:
        criteria = game_scope(difficulty_level)
        labels = self._labels(db, *criteria)

        buckets: dict[str, GameTally] = {}
        for row in self._game_sessions(db, *criteria):
            for label in labels.get(row.id, []):
                buckets.setdefault(label, GameTally()).add_session(row)

        return _sort_performance([tally.to_category(label) for label, tally in buckets.items()])

    def top_players(
        self,
        db: Session,
        difficulty_level: int | None = None,
        category: str | None = None,
        limit: int = 20,
    ) -> list[TopPlayer]:
        tallies: dict[str, GameTally] = {}
        for row in self._game_sessions(db, *game_scope(difficulty_level, category)):
            tallies.setdefault(row.player_name, GameTally()).add_session(row)
        return _rank_players(tallies, limit)

    def game_trends(
        self,
        db: Session,
        since: datetime,
        interval: str = "day",
        difficulty_level: int | None = None,
        category: str | None = None,
    ) -> list[TrendPoint]:
        rows = self._game_sessions(
            db,
            GameSession.start_time >= ensure_utc(since),
            *game_scope(difficulty_level, category),
        )
        buckets: dict[date, GameTally] = {}
        for row in rows:
            start = period_start(utc_date(row.start_time), interval)
            buckets.setdefault(start, GameTally()).add_session(row)
        return _trend_points(buckets)


class StoreAggregationStrategy(AggregationStrategy):
    """Push grouping and aggregation into the database."""

    name = "store"

    @staticmethod
    def _won():
        return case(
            ((GameSession.status == "completed") & (GameSession.score > 0), 1), else_=0
        )

    def _tally_columns(self):
        return (
            func.count(GameSession.id).label("games_played"),
            func.sum(self._won()).label("games_won"),
            func.coalesce(func.sum(GameSession.score), 0).label("total_score"),
            func.coalesce(func.sum(GameSession.total_moves), 0).label("total_moves"),
            func.coalesce(func.sum(GameSession.correct_moves), 0).label("correct_moves"),
            func.coalesce(func.sum(GameSession.incorrect_moves), 0).label("incorrect_moves"),
            func.coalesce(func.sum(GameSession.duration_seconds), 0).label("total_duration"),
            func.coalesce(func.max(GameSession.score), 0).label("best_score"),
            func.max(GameSession.end_time).label("last_played_at"),
        )

    def _game_columns(self):
        with_moves = GameSession.total_moves > 0
        session_accuracy = cast(GameSession.correct_moves, Float) / GameSession.total_moves
        return (
            func.count(GameSession.id).label("games_played"),
            func.sum(case((GameSession.status == "completed", 1), else_=0)).label(
                "completed_games"
            ),
            func.sum(case((GameSession.status == "abandoned", 1), else_=0)).label(
                "abandoned_games"
            ),
            func.sum(self._won()).label("games_won"),
            func.coalesce(func.sum(GameSession.score), 0).label("total_score"),
            func.coalesce(func.sum(GameSession.total_moves), 0).label("total_moves"),
            func.coalesce(func.sum(GameSession.duration_seconds), 0).label("total_duration"),
            func.count(GameSession.duration_seconds).label("timed_games"),
            func.coalesce(func.sum(case((with_moves, session_accuracy))), 0.0).label(
                "accuracy_sum"
            ),
            func.sum(case((with_moves, 1), else_=0)).label("games_with_moves"),
            func.max(GameSession.score).label("best_score"),
            func.min(GameSession.score).label("worst_score"),
        )

    def _player_tallies(self, db: Session, *criteria) -> dict[str, GameTally]:
        stmt = (
            select(GameSession.player_name, *self._game_columns())
            .where(*criteria)
            .group_by(GameSession.player_name)
        )
        return {
            row.player_name: GameTally.from_row(row, row.player_name)
            for row in db.execute(stmt)
        }

    def player_statistics(self, db: Session, player_name: str) -> PlayerStatistics:
        positive_score = case((GameSession.score > 0, GameSession.score))
        stmt = select(
            func.count(GameSession.id).label("games_played"),
            func.sum(self._won()).label("games_won"),
            func.sum(
                case(((GameSession.status == "completed") & (GameSession.score == 0), 1), else_=0)
            ).label("games_lost"),
            func.sum(case((GameSession.status == "abandoned", 1), else_=0)).label(
                "games_abandoned"
            ),
            func.coalesce(func.sum(GameSession.score), 0).label("total_score"),
            func.coalesce(func.sum(GameSession.total_moves), 0).label("total_moves"),
            func.coalesce(func.sum(GameSession.correct_moves), 0).label("correct_moves"),
            func.coalesce(func.sum(GameSession.incorrect_moves), 0).label("incorrect_moves"),
            func.coalesce(func.sum(GameSession.duration_seconds), 0).label("total_duration"),
            func.max(positive_score).label("best_score"),
            func.min(positive_score).label("worst_score"),
            func.max(GameSession.end_time).label("last_played_at"),
            func.min(GameSession.start_time).label("first_played_at"),
        ).where(GameSession.player_name == player_name)

        row = db.execute(stmt).one()
        tally = PlayerTally(
            games_played=int(row.games_played or 0),
            games_won=int(row.games_won or 0),
            games_lost=int(row.games_lost or 0),
            games_abandoned=int(row.games_abandoned or 0),
            total_score=int(row.total_score),
            total_moves=int(row.total_moves),
            correct_moves=int(row.correct_moves),
            incorrect_moves=int(row.incorrect_moves),
            total_duration=int(row.total_duration),
            best_score=row.best_score,
            worst_score=row.worst_score,
            last_played_at=ensure_utc(row.last_played_at),
            first_played_at=ensure_utc(row.first_played_at),
        )
        return tally.to_statistics(player_name)

    def score_distribution(self, db: Session, player_name: str) -> ScoreDistribution:
        score = func.coalesce(GameSession.score, 0)
        totals = db.execute(
            select(
                func.count(GameSession.id).label("n"),
                func.coalesce(func.sum(score), 0).label("total"),
                func.coalesce(func.sum(score * score), 0).label("total_squares"),
            ).where(GameSession.player_name == player_name)
        ).one()

        n = int(totals.n or 0)
        if n == 0:
            return ScoreDistribution()

        # Sample variance from integer sums, kept exact until the final float
        if n > 1:
            total = int(totals.total)
            variance = float(
                Fraction(n * int(totals.total_squares) - total * total, n * (n - 1))
            )
        else:
            variance = 0.0

        bounds = [percentile_bounds(n, fraction) for fraction in QUARTILES]
        wanted = {index + 1 for lower, upper, _ in bounds for index in (lower, upper)}

        ranked = (
            select(
                score.label("score"),
                func.row_number().over(order_by=(score, GameSession.id)).label("rn"),
            )
            .where(GameSession.player_name == player_name)
            .subquery()
        )
        by_rank = dict(
            db.execute(select(ranked.c.rn, ranked.c.score).where(ranked.c.rn.in_(wanted))).all()
        )

        quartiles = tuple(
            by_rank[lower + 1] * (1 - weight) + by_rank[upper + 1] * weight
            for lower, upper, weight in bounds
        )
        return _distribution(quartiles, variance)

    def category_statistics(
        self, db: Session, player_name: str, category: str | None = None
    ) -> list[CategoryStatistics]:
        stmt = (
            select(SessionCategory.category.label("bucket"), *self._tally_columns())
            .join(GameSession, GameSession.id == SessionCategory.session_id)
            .where(GameSession.player_name == player_name)
            .group_by(SessionCategory.category)
        )
        if category is not None:
            stmt = stmt.where(SessionCategory.category == category)

        return _sort_categories(
            [BucketTally.from_row(row).to_category(row.bucket) for row in db.execute(stmt)]
        )

    def difficulty_statistics(
        self, db: Session, player_name: str, difficulty_level: int | None = None
    ) -> list[DifficultyStatistics]:
        stmt = (
            select(GameSession.difficulty_level.label("bucket"), *self._tally_columns())
            .where(GameSession.player_name == player_name)
            .group_by(GameSession.difficulty_level)
            .order_by(GameSession.difficulty_level)
        )
        if difficulty_level is not None:
            stmt = stmt.where(GameSession.difficulty_level == difficulty_level)

        return [BucketTally.from_row(row).to_difficulty(row.bucket) for row in db.execute(stmt)]

    def _daily_tallies(
        self, db: Session, player_name: str, since: datetime
    ) -> dict[date, BucketTally]:
        day = func.date(GameSession.end_time)
        stmt = (
            select(day.label("bucket"), *self._tally_columns())
            .where(
                GameSession.player_name == player_name,
                GameSession.end_time.isnot(None),
                GameSession.end_time >= ensure_utc(since),
            )
            .group_by(day)
        )
        tallies = {}
        for row in db.execute(stmt):
            tallies[_as_date(row.bucket)] = BucketTally.from_row(row)
        return tallies

    def daily_statistics(
        self, db: Session, player_name: str, since: datetime
    ) -> list[DailyStatistics]:
        tallies = self._daily_tallies(db, player_name, since)
        return [tallies[day].to_daily(day) for day in sorted(tallies, reverse=True)]

    def weekly_statistics(
        self, db: Session, player_name: str, since: datetime
    ) -> list[WeeklyStatistics]:
        weeks: dict[tuple[int, int], BucketTally] = {}
        for day, tally in self._daily_tallies(db, player_name, since).items():
            iso = day.isocalendar()
            weeks.setdefault((iso.year, iso.week), BucketTally()).merge(tally)

        return [weeks[key].to_weekly(*key) for key in sorted(weeks, reverse=True)]

    def favorite_categories(
        self, db: Session, player_name: str, limit: int = 5
    ) -> list[FavoriteCategory]:
        play_count = func.count(SessionCategory.id).label("play_count")
        stmt = (
            select(SessionCategory.category, play_count)
            .join(GameSession, GameSession.id == SessionCategory.session_id)
            .where(GameSession.player_name == player_name)
            .group_by(SessionCategory.category)
            .order_by(play_count.desc(), SessionCategory.category)
            .limit(limit)
        )
        return [
            FavoriteCategory(category=label, play_count=int(count))
            for label, count in db.execute(stmt)
        ]

    def favorite_difficulty(self, db: Session, player_name: str) -> FavoriteDifficulty:
        play_count = func.count(GameSession.id).label("play_count")
        stmt = (
            select(GameSession.difficulty_level, play_count)
            .where(GameSession.player_name == player_name)
            .group_by(GameSession.difficulty_level)
            .order_by(play_count.desc(), GameSession.difficulty_level)
            .limit(1)
        )
        row = db.execute(stmt).first()
        if row is None:
            return FavoriteDifficulty()
        return FavoriteDifficulty(difficulty_level=row[0], play_count=int(row[1]))

    def game_totals(
        self, db: Session, difficulty_level: int | None = None, category: str | None = None
    ) -> GameTotals:
        # Grouped per player so distinct players survive the merge
        tally = GameTally()
        for player_tally in self._player_tallies(
            db, *game_scope(difficulty_level, category)
        ).values():
            tally.merge(player_tally)
        return tally.to_totals()

    def difficulty_performance(
        self, db: Session, category: str | None = None
    ) -> list[DifficultyPerformance]:
        stmt = (
            select(GameSession.difficulty_level.label("bucket"), *self._game_columns())
            .where(*game_scope(category=category))
            .group_by(GameSession.difficulty_level)
            .order_by(GameSession.difficulty_level)
        )
        return [
            GameTally.from_row(row).to_difficulty(row.bucket) for row in db.execute(stmt)
        ]

    def category_performance(
        self, db: Session, difficulty_level: int | None = None
    ) -> list[CategoryPerformance]:
        stmt = (
            select(SessionCategory.category.label("bucket"), *self._game_columns())
            .join(GameSession, GameSession.id == SessionCategory.session_id)
            .where(*game_scope(difficulty_level))
            .group_by(SessionCategory.category)
        )
        return _sort_performance(
            [GameTally.from_row(row).to_category(row.bucket) for row in db.execute(stmt)]
        )

    def top_players(
        self,
        db: Session,
        difficulty_level: int | None = None,
        category: str | None = None,
        limit: int = 20,
    ) -> list[TopPlayer]:
        return _rank_players(
            self._player_tallies(db, *game_scope(difficulty_level, category)), limit
        )

    def game_trends(
        self,
        db: Session,
        since: datetime,
        interval: str = "day",
        difficulty_level: int | None = None,
        category: str | None = None,
    ) -> list[TrendPoint]:
        day = func.date(GameSession.start_time)
        stmt = (
            select(day.label("bucket"), GameSession.player_name, *self._game_columns())
            .where(
                GameSession.start_time >= ensure_utc(since),
                *game_scope(difficulty_level, category),
            )
            .group_by(day, GameSession.player_name)
        )
        buckets: dict[date, GameTally] = {}
        for row in db.execute(stmt):
            start = period_start(_as_date(row.bucket), interval)
            buckets.setdefault(start, GameTally()).merge(
                GameTally.from_row(row, row.player_name)
            )
        return _trend_points(buckets)
