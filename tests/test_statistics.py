# tests/test_statistics.py
from datetime import timedelta

import pytest

from fixtures.builders import add_session, utc
from timeline_ledger.analytics import formulas
from timeline_ledger.analytics.aggregator import StatisticsAggregator
from timeline_ledger.analytics.strategies import (
    RowAggregationStrategy,
    StoreAggregationStrategy,
)
from timeline_ledger.cache import QueryCache
from timeline_ledger.config import StatisticsPolicy
from timeline_ledger.db.session import read_scope
from timeline_ledger.errors import ValidationError

NOW = utc(2024, 3, 10)


def _seed_ada(factory):
    """Four sessions covering won, lost, abandoned and still active."""
    add_session(
        factory, "Ada", score=100, difficulty_level=2, categories=("History", "Science"),
        total_moves=10, correct_moves=8, start_time=utc(2024, 3, 1), duration_seconds=300,
    )
    add_session(
        factory, "Ada", score=0, difficulty_level=2, categories=("History",),
        total_moves=6, correct_moves=2, start_time=utc(2024, 3, 2), duration_seconds=200,
    )
    add_session(
        factory, "Ada", score=40, status="abandoned", difficulty_level=3, categories=("Art",),
        total_moves=4, correct_moves=3, start_time=utc(2024, 3, 3), duration_seconds=101,
    )
    add_session(
        factory, "Ada", score=0, status="active", difficulty_level=1, categories=("History",),
        total_moves=2, correct_moves=1, start_time=utc(2024, 3, 4),
    )


@pytest.fixture
def aggregator(session_factory, cache, monitor):
    return StatisticsAggregator(
        session_factory, cache=cache, monitor=monitor, clock=lambda: NOW
    )


# ----------------------------------------------------------------------
# Formulas
# ----------------------------------------------------------------------


def test_accuracy_rounds_to_two_decimals():
    assert formulas.accuracy(2, 3) == 66.67
    assert formulas.accuracy(1, 3) == 33.33
    assert formulas.accuracy(5, 0) == 0.0
    assert formulas.accuracy(None, None) == 0.0


def test_round2_is_half_up():
    assert formulas.round2(2.675) == 2.68
    assert formulas.round2(None) == 0.0


def test_round_half_up_int():
    assert formulas.round_half_up_int(150.5) == 151
    assert formulas.round_half_up_int(150.25) == 150


def test_win_and_loss_classification():
    assert formulas.is_won("completed", 10)
    assert not formulas.is_won("completed", 0)
    assert not formulas.is_won("abandoned", 50)
    assert formulas.is_lost("completed", 0)
    assert not formulas.is_lost("abandoned", 0)


def test_row_strategy_counts_outcomes_like_the_predicates(session_factory):
    outcomes = [("completed", 10), ("completed", 0), ("abandoned", 0), ("abandoned", 30),
                ("active", 5), ("completed", 1)]
    for status, score in outcomes:
        add_session(session_factory, "Ada", score=score, status=status)

    with read_scope(session_factory) as db:
        stats = RowAggregationStrategy().player_statistics(db, "Ada")
        categories = RowAggregationStrategy().category_statistics(db, "Ada")

    won = sum(formulas.is_won(status, score) for status, score in outcomes)
    lost = sum(formulas.is_lost(status, score) for status, score in outcomes)
    assert (stats.total_games_won, stats.total_games_lost) == (won, lost) == (2, 1)
    assert stats.total_games_abandoned == 2
    assert categories[0].games_won == won


def test_percentile_interpolates():
    values = [0, 0, 40, 100]
    assert formulas.percentile(values, 0.5) == 20.0
    assert formulas.percentile(values, 0.75) == 55.0
    assert formulas.percentile([], 0.5) == 0.0
    assert formulas.percentile_bounds(4, 0.75) == (2, 3, 0.25)


# ----------------------------------------------------------------------
# Player statistics
# ----------------------------------------------------------------------


def test_player_statistics(aggregator, session_factory):
    _seed_ada(session_factory)

    stats = aggregator.get_player_statistics("Ada")

    assert stats.total_games_played == 4
    assert stats.total_games_won == 1
    assert stats.total_games_lost == 1
    assert stats.total_games_abandoned == 1
    assert stats.total_score == 140
    assert stats.total_moves == 22
    assert stats.total_correct_moves == 14
    assert stats.total_incorrect_moves == 8
    assert stats.total_play_time_seconds == 601
    assert stats.average_score_per_game == 35.0
    assert stats.average_accuracy == 63.64
    assert stats.best_score == 100
    assert stats.worst_score == 40
    assert stats.average_game_duration_seconds == 150
    assert stats.win_rate == 25.0
    assert stats.first_played_at == utc(2024, 3, 1)
    assert stats.last_played_at == utc(2024, 3, 3) + timedelta(seconds=101)


def test_unknown_player_gets_zero_variant(aggregator):
    stats = aggregator.get_player_statistics("Nobody")

    assert stats.player_name == "Nobody"
    assert stats.total_games_played == 0
    assert stats.win_rate == 0.0
    assert stats.average_accuracy == 0.0
    assert stats.last_played_at is None
    assert aggregator.get_category_statistics("Nobody") == []
    assert aggregator.get_daily_statistics("Nobody") == []
    favorite = aggregator.get_favorite_difficulty("Nobody")
    assert (favorite.difficulty_level, favorite.play_count) == (1, 0)


def test_blank_player_name_rejected(aggregator):
    with pytest.raises(ValidationError) as exc_info:
        aggregator.get_player_statistics("   ")

    assert exc_info.value.field == "player_name"


def test_advanced_statistics(aggregator, session_factory):
    _seed_ada(session_factory)

    stats = aggregator.get_player_advanced_statistics("Ada")

    assert stats.total_games_played == 4
    assert stats.q1_score == 0.0
    assert stats.median_score == 20.0
    assert stats.q3_score == 55.0
    assert stats.score_variance == 2233.33
    assert stats.score_stddev == 47.26


def test_advanced_statistics_single_game_has_no_spread(aggregator, session_factory):
    add_session(session_factory, "Solo", score=70)

    stats = aggregator.get_player_advanced_statistics("Solo")

    assert stats.median_score == 70.0
    assert stats.score_variance == 0.0
    assert stats.score_stddev == 0.0


# ----------------------------------------------------------------------
# Breakdowns
# ----------------------------------------------------------------------


def test_category_statistics_credit_every_label(aggregator, session_factory):
    _seed_ada(session_factory)

    buckets = aggregator.get_category_statistics("Ada")

    assert [b.category for b in buckets] == ["History", "Art", "Science"]
    history = buckets[0]
    assert history.games_played == 3
    assert history.games_won == 1
    assert history.total_score == 100
    assert history.total_moves == 18
    assert history.correct_moves == 11
    assert history.accuracy == 61.11
    assert history.best_score == 100
    assert history.average_game_duration_seconds == 167
    assert history.win_rate == 33.33
    assert sum(b.games_played for b in buckets) == 5


def test_category_statistics_single_category(aggregator, session_factory):
    _seed_ada(session_factory)

    buckets = aggregator.get_category_statistics("Ada", category="Science")

    assert len(buckets) == 1
    assert buckets[0].category == "Science"
    assert buckets[0].games_played == 1


def test_difficulty_statistics(aggregator, session_factory):
    _seed_ada(session_factory)

    buckets = aggregator.get_difficulty_statistics("Ada")

    assert [b.difficulty_level for b in buckets] == [1, 2, 3]
    assert buckets[1].games_played == 2
    assert buckets[1].average_score == 50.0
    assert buckets[1].accuracy == 62.5


def test_difficulty_level_out_of_range(aggregator):
    with pytest.raises(ValidationError):
        aggregator.get_difficulty_statistics("Ada", difficulty_level=6)


def test_daily_statistics_newest_first(aggregator, session_factory):
    _seed_ada(session_factory)

    days = aggregator.get_daily_statistics("Ada", days=30)

    assert [d.date.isoformat() for d in days] == ["2024-03-03", "2024-03-02", "2024-03-01"]
    assert days[2].total_play_time_seconds == 300
    assert days[2].games_won == 1


def test_daily_window_excludes_older_sessions(aggregator, session_factory):
    add_session(session_factory, "Ada", score=10, start_time=utc(2024, 3, 9))
    add_session(session_factory, "Ada", score=10, start_time=utc(2024, 1, 1))

    days = aggregator.get_daily_statistics("Ada", days=7)

    assert [d.date.isoformat() for d in days] == ["2024-03-09"]


@pytest.mark.parametrize("kwargs", [{"days": 0}, {"days": -3}])
def test_daily_window_must_be_positive(aggregator, kwargs):
    with pytest.raises(ValidationError):
        aggregator.get_daily_statistics("Ada", **kwargs)


@pytest.mark.parametrize("strategy_mode", ["row", "store"])
def test_weekly_statistics_use_iso_weeks(session_factory, strategy_mode):
    # 2024-01-01 and 2024-01-07 fall in ISO week 1, 2024-01-08 in week 2
    for day in (1, 7, 8):
        add_session(
            session_factory, "Ada", score=10, start_time=utc(2024, 1, day, 10),
            duration_seconds=60,
        )
    aggregator = StatisticsAggregator(
        session_factory,
        policy=StatisticsPolicy(strategy_mode),
        clock=lambda: utc(2024, 1, 10),
    )

    weeks = aggregator.get_weekly_statistics("Ada", weeks=12)

    assert [w.week_key for w in weeks] == ["2024-W02", "2024-W01"]
    assert [w.games_played for w in weeks] == [1, 2]
    assert weeks[1].total_play_time_seconds == 120


def test_weeks_must_be_positive(aggregator):
    with pytest.raises(ValidationError):
        aggregator.get_weekly_statistics("Ada", weeks=0)


def test_favorites(aggregator, session_factory):
    _seed_ada(session_factory)

    categories = aggregator.get_favorite_categories("Ada")
    difficulty = aggregator.get_favorite_difficulty("Ada")

    assert [(f.category, f.play_count) for f in categories] == [
        ("History", 3),
        ("Art", 1),
        ("Science", 1),
    ]
    assert aggregator.get_favorite_categories("Ada", limit=1)[0].category == "History"
    assert (difficulty.difficulty_level, difficulty.play_count) == (2, 2)


def test_favorite_difficulty_tie_picks_lowest_level(aggregator, session_factory):
    add_session(session_factory, "Ada", difficulty_level=4)
    add_session(session_factory, "Ada", difficulty_level=2)

    favorite = aggregator.get_favorite_difficulty("Ada")

    assert favorite.difficulty_level == 2


# ----------------------------------------------------------------------
# Strategies
# ----------------------------------------------------------------------


def test_row_and_store_strategies_agree(session_factory):
    _seed_ada(session_factory)
    add_session(session_factory, "Ada", score=75, difficulty_level=5, categories=("Art", "War"),
                total_moves=9, correct_moves=9, start_time=utc(2024, 2, 27, 23, 58))
    since = utc(2024, 1, 1)
    row, store = RowAggregationStrategy(), StoreAggregationStrategy()

    with read_scope(session_factory) as db:
        for name, args in [
            ("player_statistics", ()),
            ("score_distribution", ()),
            ("category_statistics", ()),
            ("difficulty_statistics", ()),
            ("daily_statistics", (since,)),
            ("weekly_statistics", (since,)),
            ("favorite_categories", (5,)),
            ("favorite_difficulty", ()),
        ]:
            expected = getattr(row, name)(db, "Ada", *args)
            actual = getattr(store, name)(db, "Ada", *args)
            assert actual == expected, name


@pytest.mark.parametrize(
    "mode,requested_type,expected",
    [
        ("hybrid", "basic", "row"),
        ("hybrid", "advanced", "store"),
        ("row", "advanced", "row"),
        ("store", "basic", "store"),
    ],
)
def test_policy_selects_strategy(session_factory, mode, requested_type, expected):
    aggregator = StatisticsAggregator(session_factory, policy=StatisticsPolicy(mode))

    assert aggregator.strategy_for(requested_type).name == expected


# ----------------------------------------------------------------------
# Caching and monitoring
# ----------------------------------------------------------------------


def test_results_are_cached(aggregator, session_factory, cache):
    add_session(session_factory, "Ada", score=10)

    first = aggregator.get_player_statistics("Ada")
    add_session(session_factory, "Ada", score=20)
    second = aggregator.get_player_statistics("Ada")

    assert second == first
    assert cache.get_stats()["hits"] == 1

    cache.clear()
    assert aggregator.get_player_statistics("Ada").total_games_played == 2


def test_cached_entries_expire(session_factory, fake_clock):
    cache = QueryCache(default_ttl=60, clock=fake_clock)
    aggregator = StatisticsAggregator(session_factory, cache=cache)
    add_session(session_factory, "Ada", score=10)
    aggregator.get_player_statistics("Ada")
    add_session(session_factory, "Ada", score=20)

    fake_clock.advance(61)

    assert aggregator.get_player_statistics("Ada").total_games_played == 2


def test_computations_are_monitored(aggregator, monitor):
    aggregator.get_player_statistics("Ada")

    metrics = monitor.get_metrics()
    assert metrics["total_calls"] == 1
    assert metrics["error_calls"] == 0
    assert monitor.operations() == [
        "StatisticsAggregator.get_player_statistics(player_name=Ada)"
    ]


# ----------------------------------------------------------------------
# Composite views
# ----------------------------------------------------------------------


def test_player_summary(aggregator, session_factory):
    _seed_ada(session_factory)

    summary = aggregator.get_player_summary("Ada")

    assert summary.player_name == "Ada"
    assert summary.overview.total_games_played == 4
    assert summary.favorite_categories[0].category == "History"
    assert summary.favorite_difficulty.difficulty_level == 2
    assert len(summary.category_statistics) == 3
    assert len(summary.difficulty_statistics) == 3
    assert summary.total_completed_games == 2
    assert summary.improvement.score_improvement == 0.0
    assert len(summary.last_30_days) == 3
    assert [w.week_key for w in summary.last_12_weeks] == ["2024-W09"]

    data = summary.to_dict()
    assert data["overview"]["last_played_at"].startswith("2024-03-03")


def test_compare_players(aggregator, session_factory):
    add_session(session_factory, "Ada", score=100)
    add_session(session_factory, "Grace", score=40)
    add_session(session_factory, "Grace", score=0)

    comparison = aggregator.compare_players(["Ada", " Grace ", ""])

    assert comparison.players == ["Ada", "Grace"]
    assert comparison.total_players == 2
    assert comparison.best_score == 100
    assert comparison.highest_win_rate == 100.0
    assert comparison.most_games == 2


def test_compare_players_limits(aggregator):
    with pytest.raises(ValidationError):
        aggregator.compare_players([])
    with pytest.raises(ValidationError):
        aggregator.compare_players([" ", None])
    with pytest.raises(ValidationError):
        aggregator.compare_players([f"P{i}" for i in range(11)])
