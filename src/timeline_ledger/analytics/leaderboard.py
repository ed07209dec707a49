"""Leaderboards over completed, scored sessions.

Players are ordered by average score, then accuracy, then name, so equal
scores always rank the same way. Boards are sorted in full before they
are cut to the requested size.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session, sessionmaker

from ..cache import QueryCache, make_key
from ..db.models import GameSession, SessionCategory
from ..db.session import read_scope
from ..errors import ValidationError
from ..monitor import PerformanceMonitor
from ..utils.timeutil import start_of_day, start_of_iso_week, utc_now
from .formulas import accuracy, round2, safe_average
from .service import AnalyticsService, require_player_name
from .types import LeaderboardEntry, LeaderboardSummary, PlayerRankings

logger = logging.getLogger(__name__)

PERIODS = ("all", "daily", "weekly")
MAX_LIMIT = 100

# Seconds each board stays cached
BOARD_TTL_SECONDS = {"all": 120.0, "category": 180.0, "daily": 60.0, "weekly": 300.0}
SUMMARY_TTL_SECONDS = 600.0


def rank_key(entry: LeaderboardEntry) -> tuple:
    return (-entry.avg_score, -entry.accuracy_percentage, entry.player_name)


def rank_entries(
    entries: Iterable[LeaderboardEntry], limit: int | None = None
) -> list[LeaderboardEntry]:
    """Sort entries into board order, then truncate and number them from 1."""
    ordered = sorted(entries, key=rank_key)
    if limit is not None:
        ordered = ordered[:limit]
    return [replace(entry, rank=position) for position, entry in enumerate(ordered, start=1)]


class LeaderboardRanker(AnalyticsService):
    """Global, category and time-window leaderboards.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the store
        cache: Result cache; boards use their own TTLs
        monitor: Performance monitor wrapping every computation
        clock: Returns the current aware UTC time (for daily/weekly boards)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: QueryCache | None = None,
        monitor: PerformanceMonitor | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(session_factory, cache, monitor)
        self._clock = clock or utc_now

    def _window(self, period: str) -> tuple[datetime, datetime] | None:
        now = self._clock()
        if period == "daily":
            start = start_of_day(now)
            return start, start + timedelta(days=1)
        if period == "weekly":
            start = start_of_iso_week(now)
            return start, start + timedelta(weeks=1)
        return None

    def _board_criteria(self, category: str | None, period: str) -> list:
        criteria = [GameSession.status == "completed", GameSession.score > 0]
        if category is not None:
            criteria.append(
                GameSession.id.in_(
                    select(SessionCategory.session_id).where(SessionCategory.category == category)
                )
            )
        window = self._window(period)
        if window is not None:
            criteria.extend([GameSession.end_time >= window[0], GameSession.end_time < window[1]])
        return criteria

    def _standings(self, db: Session, category: str | None, period: str) -> list[LeaderboardEntry]:
        stmt = (
            select(
                GameSession.player_name,
                func.count(GameSession.id).label("games_played"),
                func.sum(GameSession.score).label("total_score"),
                func.max(GameSession.score).label("best_score"),
                func.coalesce(func.sum(GameSession.correct_moves), 0).label("correct_moves"),
                func.coalesce(func.sum(GameSession.total_moves), 0).label("total_moves"),
            )
            .where(*self._board_criteria(category, period))
            .group_by(GameSession.player_name)
        )
        entries = [
            LeaderboardEntry(
                player_name=row.player_name,
                games_played=int(row.games_played),
                avg_score=round2(safe_average(int(row.total_score), int(row.games_played))),
                best_score=int(row.best_score),
                total_correct_moves=int(row.correct_moves),
                total_moves=int(row.total_moves),
                accuracy_percentage=accuracy(int(row.correct_moves), int(row.total_moves)),
            )
            for row in db.execute(stmt)
        ]
        return rank_entries(entries)

    def get_leaderboard(
        self, limit: int = 10, category: str | None = None, period: str = "all"
    ) -> list[LeaderboardEntry]:
        """Top ``limit`` players for a board.

        Args:
            limit: Board size, 1 to 100
            category: Only sessions that include this category
            period: "all", "daily" (today, UTC) or "weekly" (current ISO week)

        Raises:
            ValidationError: Limit or period out of range
        """
        if not 1 <= limit <= MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}", field="limit")
        if period not in PERIODS:
            raise ValidationError(
                f"Invalid period '{period}'. Must be one of: {', '.join(PERIODS)}",
                field="period",
            )

        board = "category" if category is not None else period

        def compute() -> list[LeaderboardEntry]:
            with read_scope(self._factory) as db:
                entries = self._standings(db, category, period)[:limit]
            logger.info(f"Leaderboard {board} retrieved: {len(entries)} players")
            return entries

        return self._run(
            f"get_leaderboard/{board}",
            {"category": category, "limit": limit, "period": period},
            compute,
            ttl=BOARD_TTL_SECONDS[board],
        )

    def get_player_rankings(self, player_name: str) -> PlayerRankings:
        """Where a player stands on the global, daily, weekly and category boards."""
        player_name = require_player_name(player_name)

        def position(entries: list[LeaderboardEntry]) -> int | None:
            for entry in entries:
                if entry.player_name == player_name:
                    return entry.rank
            return None

        def compute() -> PlayerRankings:
            with read_scope(self._factory) as db:
                categories = db.execute(
                    select(SessionCategory.category).distinct()
                    .join(GameSession, GameSession.id == SessionCategory.session_id)
                    .where(
                        GameSession.player_name == player_name,
                        *self._board_criteria(None, "all"),
                    )
                    .order_by(SessionCategory.category)
                ).scalars().all()

                rankings = PlayerRankings(
                    player_name=player_name,
                    global_rank=position(self._standings(db, None, "all")),
                    daily_rank=position(self._standings(db, None, "daily")),
                    weekly_rank=position(self._standings(db, None, "weekly")),
                    categories={
                        label: position(self._standings(db, label, "all")) for label in categories
                    },
                )
            logger.info(f"Player rankings retrieved for {player_name}")
            return rankings

        return self._run(
            "get_player_rankings",
            {"player_name": player_name},
            compute,
            ttl=BOARD_TTL_SECONDS["all"],
        )

    def get_leaderboard_summary(self) -> LeaderboardSummary:
        """Counts and score extremes across all boards."""

        def active_players(db: Session, period: str) -> int:
            stmt = select(func.count(distinct(GameSession.player_name))).where(
                *self._board_criteria(None, period)
            )
            return int(db.execute(stmt).scalar() or 0)

        def compute() -> LeaderboardSummary:
            with read_scope(self._factory) as db:
                standings = self._standings(db, None, "all")
                category_entries = db.execute(
                    select(func.count()).select_from(
                        select(GameSession.player_name, SessionCategory.category)
                        .join(SessionCategory, SessionCategory.session_id == GameSession.id)
                        .where(*self._board_criteria(None, "all"))
                        .distinct()
                        .subquery()
                    )
                ).scalar()
                summary = LeaderboardSummary(
                    total_players=len(standings),
                    total_category_entries=int(category_entries or 0),
                    daily_active_players=active_players(db, "daily"),
                    weekly_active_players=active_players(db, "weekly"),
                    highest_score=max((e.best_score for e in standings), default=0),
                    average_score=round2(
                        safe_average(sum(e.avg_score for e in standings), len(standings))
                    ),
                )
            logger.info("Leaderboard summary retrieved")
            return summary

        return self._run("get_leaderboard_summary", {}, compute, ttl=SUMMARY_TTL_SECONDS)

    def invalidate(self, category: str | None = None) -> int:
        """Drop cached boards after new results land.

        Global, daily, weekly, summary and player rankings always go. With a
        category only that category's boards go with them; without one every
        category board is dropped.
        """
        prefix = f"{type(self).__name__}."
        removed = 0
        for operation in (
            "get_leaderboard/all",
            "get_leaderboard/daily",
            "get_leaderboard/weekly",
            "get_leaderboard_summary",
            "get_player_rankings",
        ):
            removed += self.cache.invalidate_prefix(prefix + operation)

        category_prefix = prefix + "get_leaderboard/category"
        if category is not None:
            # Keys sort "category" first: '<op>:{"category":"History",...'
            category_prefix = make_key(category_prefix, {"category": category})[:-1] + ","
        removed += self.cache.invalidate_prefix(category_prefix)

        logger.info(
            f"Leaderboard caches invalidated: {removed} entries"
            + (f" for category: {category}" if category else "")
        )
        return removed
