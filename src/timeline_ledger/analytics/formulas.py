"""Shared metric formulas.

Percentages and averages are rounded to 2 decimals for presentation;
counts and sums stay integers.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal


def round2(value: float | int | None) -> float:
    """Round half-up to 2 decimals; ``None`` becomes 0.0."""
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def accuracy(correct_moves: int | None, total_moves: int | None) -> float:
    """Correct share of moves in percent, 0 when no moves were made."""
    total = total_moves or 0
    if total <= 0:
        return 0.0
    return round2((correct_moves or 0) / total * 100)


def percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round2(part / whole * 100)


def win_rate(games_won: int, games_played: int) -> float:
    return percentage(games_won, games_played)


def safe_average(total: float | int | None, count: int) -> float:
    """Unrounded ``total / count``, 0 when ``count`` is 0."""
    if count <= 0:
        return 0.0
    return (total or 0) / count


def is_won(status: str, score: int | None) -> bool:
    """A game is won iff it completed with a positive score."""
    return status == "completed" and (score or 0) > 0


def is_lost(status: str, score: int | None) -> bool:
    return status == "completed" and (score or 0) == 0


def percentile(sorted_values: Sequence[float], fraction: float) -> float:
    """Continuous percentile with linear interpolation (SQL PERCENTILE_CONT).

    Args:
        sorted_values: Values in ascending order
        fraction: Percentile in [0, 1]
    """
    if not sorted_values:
        return 0.0
    position = fraction * (len(sorted_values) - 1)
    lower = math.floor(position)
    upper = math.ceil(position)
    weight = position - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def percentile_bounds(count: int, fraction: float) -> tuple[int, int, float]:
    """Zero-based rows and upper weight for a PERCENTILE_CONT over ``count`` rows."""
    position = fraction * (count - 1)
    lower = math.floor(position)
    return lower, math.ceil(position), position - lower


def round_half_up_int(value: float | int | None) -> int:
    """Round half-up to a whole number (durations are reported in whole seconds)."""
    if value is None:
        return 0
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
