"""Player progression: per-game snapshots and an early-vs-recent trend."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select

from ..db.models import GameSession
from ..db.session import read_scope
from ..utils.timeutil import ensure_utc
from .formulas import accuracy, round2, safe_average
from .service import AnalyticsService, require_player_name
from .types import ImprovementSummary, ProgressionEntry, ProgressionReport

# Games compared at each end of the history
TREND_WINDOW = 10


def _raw_accuracy(correct: int, total: int) -> float:
    return correct / total * 100 if total > 0 else 0.0


def build_progression(
    player_name: str, rows: Sequence, window: int = TREND_WINDOW
) -> ProgressionReport:
    """Build a progression report from completed sessions.

    Args:
        player_name: Player the rows belong to
        rows: Completed sessions ordered by start time (oldest first); each
            needs start_time, score, difficulty_level, total_moves,
            correct_moves and duration_seconds
        window: Size of the early and recent windows. Both shrink for short
            histories and overlap when there are fewer than ``2 * window``
            games.

    Returns:
        ProgressionReport with 1-based game numbers
    """
    entries = []
    scores = []
    accuracies = []
    for number, row in enumerate(rows, start=1):
        total = row.total_moves or 0
        correct = row.correct_moves or 0
        scores.append(row.score or 0)
        accuracies.append(_raw_accuracy(correct, total))
        entries.append(
            ProgressionEntry(
                game_number=number,
                date=ensure_utc(row.start_time),
                score=row.score or 0,
                difficulty_level=row.difficulty_level,
                total_moves=total,
                correct_moves=correct,
                accuracy=accuracy(correct, total),
                duration_seconds=row.duration_seconds or 0,
            )
        )

    early_scores, recent_scores = scores[:window], scores[-window:]
    early_acc, recent_acc = accuracies[:window], accuracies[-window:]

    recent_avg_score = safe_average(sum(recent_scores), len(recent_scores))
    early_avg_score = safe_average(sum(early_scores), len(early_scores))
    recent_avg_accuracy = safe_average(sum(recent_acc), len(recent_acc))
    early_avg_accuracy = safe_average(sum(early_acc), len(early_acc))

    improvement = ImprovementSummary(
        score_improvement=round2(recent_avg_score - early_avg_score),
        accuracy_improvement=round2(recent_avg_accuracy - early_avg_accuracy),
        recent_avg_score=round2(recent_avg_score),
        early_avg_score=round2(early_avg_score),
        recent_avg_accuracy=round2(recent_avg_accuracy),
        early_avg_accuracy=round2(early_avg_accuracy),
    )
    return ProgressionReport(
        player_name=player_name,
        total_games=len(entries),
        progression=entries,
        improvement=improvement,
    )


class ProgressionAnalyzer(AnalyticsService):
    """Trend metrics over a player's completed games."""

    def get_player_progression(self, player_name: str) -> ProgressionReport:
        player_name = require_player_name(player_name)

        def compute() -> ProgressionReport:
            stmt = (
                select(
                    GameSession.start_time,
                    GameSession.score,
                    GameSession.difficulty_level,
                    GameSession.total_moves,
                    GameSession.correct_moves,
                    GameSession.duration_seconds,
                )
                .where(
                    GameSession.player_name == player_name,
                    GameSession.status == "completed",
                )
                .order_by(GameSession.start_time, GameSession.id)
            )
            with read_scope(self._factory) as db:
                rows = db.execute(stmt).all()
            return build_progression(player_name, rows)

        return self._run("get_player_progression", {"player_name": player_name}, compute)
