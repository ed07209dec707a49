# tests/test_game_analytics.py
import pytest

from fixtures.builders import add_session, utc
from timeline_ledger.analytics.aggregator import StatisticsAggregator
from timeline_ledger.analytics.strategies import (
    RowAggregationStrategy,
    StoreAggregationStrategy,
)
from timeline_ledger.analytics.types import GameTotals
from timeline_ledger.config import StatisticsPolicy
from timeline_ledger.db.session import read_scope
from timeline_ledger.errors import ValidationError

# Sunday; the recent-activity window starts 2024-02-09 00:00 UTC
NOW = utc(2024, 3, 10, 15)


def _seed(factory):
    add_session(factory, "Ada", score=100, difficulty_level=2, categories=("History", "Science"),
                total_moves=10, correct_moves=8, start_time=utc(2024, 3, 1), duration_seconds=300)
    add_session(factory, "Ada", score=0, difficulty_level=2, categories=("History",),
                total_moves=4, correct_moves=1, start_time=utc(2024, 3, 4), duration_seconds=200)
    add_session(factory, "Grace", score=60, difficulty_level=3, categories=("Science",),
                total_moves=5, correct_moves=5, start_time=utc(2024, 3, 4), duration_seconds=101)
    add_session(factory, "Grace", score=30, status="abandoned", difficulty_level=2,
                categories=("History",), start_time=utc(2024, 3, 9), duration_seconds=50)
    add_session(factory, "Linus", score=0, status="active", difficulty_level=1,
                categories=("Art",), total_moves=2, correct_moves=1, start_time=utc(2024, 3, 10))
    # Older than the recent-activity window
    add_session(factory, "Ada", score=50, difficulty_level=1, categories=("History",),
                start_time=utc(2024, 1, 15), duration_seconds=400)


@pytest.fixture(params=["row", "store"])
def aggregator(request, session_factory, cache, monitor):
    _seed(session_factory)
    return StatisticsAggregator(
        session_factory,
        policy=StatisticsPolicy(request.param),
        cache=cache,
        monitor=monitor,
        clock=lambda: NOW,
    )


# ----------------------------------------------------------------------
# Overview
# ----------------------------------------------------------------------


def test_overall_totals(aggregator):
    overall = aggregator.get_game_overview().overall

    assert overall.total_games == 6
    assert overall.completed_games == 4
    assert overall.abandoned_games == 1
    assert overall.unique_players == 3
    assert overall.completion_rate == 66.67
    assert overall.average_score == 40.0
    # Durations average over the five finished sessions
    assert overall.average_duration_seconds == 210
    assert overall.average_moves == 3.5
    # Accuracy averages per-session ratios over the four sessions with moves
    assert overall.average_accuracy == 63.75
    assert overall.best_score == 100
    assert overall.worst_score == 0


def test_difficulty_distribution(aggregator):
    levels = aggregator.get_game_overview().difficulty_distribution

    assert [d.difficulty_level for d in levels] == [1, 2, 3]
    easy, medium, hard = levels
    assert (easy.games_played, easy.games_won, easy.win_rate) == (2, 1, 50.0)
    assert easy.average_duration_seconds == 400
    assert easy.average_accuracy == 50.0
    assert (medium.games_played, medium.games_won, medium.win_rate) == (3, 1, 33.33)
    assert medium.average_score == 43.33
    assert medium.average_duration_seconds == 183
    assert medium.average_accuracy == 52.5
    assert hard.average_accuracy == 100.0


def test_category_performance_credits_every_label(aggregator):
    categories = aggregator.get_game_overview().category_performance

    assert [(c.category, c.games_played) for c in categories] == [
        ("History", 4),
        ("Science", 2),
        ("Art", 1),
    ]
    history, science, _ = categories
    assert history.win_rate == 50.0
    assert history.average_score == 45.0
    assert history.average_duration_seconds == 238
    assert science.average_accuracy == 90.0


def test_recent_activity_by_start_date(aggregator):
    activity = aggregator.get_game_overview().recent_activity

    assert [a.period_start for a in activity] == [
        utc(2024, 3, 10).date(),
        utc(2024, 3, 9).date(),
        utc(2024, 3, 4).date(),
        utc(2024, 3, 1).date(),
    ]
    busy = activity[2]
    assert busy.games_played == 2
    assert busy.active_players == 2
    assert busy.completion_rate == 100.0
    assert busy.average_duration_seconds == 151
    assert busy.average_accuracy == 62.5
    unfinished = activity[0]
    assert unfinished.completed_games == 0
    assert unfinished.average_duration_seconds == 0


def test_overview_to_dict(aggregator):
    data = aggregator.get_game_overview().to_dict()

    assert data["overall"]["total_games"] == 6
    assert data["recent_activity"][0]["period_start"] == "2024-03-10"


def test_overview_of_empty_store(session_factory):
    overview = StatisticsAggregator(session_factory, clock=lambda: NOW).get_game_overview()

    assert overview.overall == GameTotals()
    assert overview.difficulty_distribution == []
    assert overview.category_performance == []
    assert overview.recent_activity == []


# ----------------------------------------------------------------------
# Scoped views
# ----------------------------------------------------------------------


def test_difficulty_analytics(aggregator):
    analytics = aggregator.get_difficulty_analytics(2)

    overview = analytics.overview
    assert analytics.difficulty_level == 2
    assert (overview.total_games, overview.completed_games, overview.abandoned_games) == (3, 2, 1)
    assert overview.unique_players == 2
    assert overview.average_moves == 4.67
    assert (overview.best_score, overview.worst_score) == (100, 0)
    assert [(c.category, c.games_played) for c in analytics.category_performance] == [
        ("History", 3),
        ("Science", 1),
    ]
    assert [p.player_name for p in analytics.top_players] == ["Ada", "Grace"]
    ada = analytics.top_players[0]
    assert (ada.games_played, ada.average_score, ada.best_score) == (2, 50.0, 100)
    assert len(analytics.recent_activity) == 3


def test_category_analytics(aggregator):
    analytics = aggregator.get_category_analytics(" Science ")

    assert analytics.category == "Science"
    assert analytics.overview.total_games == 2
    assert analytics.overview.completion_rate == 100.0
    assert analytics.overview.average_score == 80.0
    assert [d.difficulty_level for d in analytics.difficulty_performance] == [2, 3]
    assert [(p.player_name, p.average_score) for p in analytics.top_players] == [
        ("Ada", 100.0),
        ("Grace", 60.0),
    ]


def test_unknown_category_is_empty(aggregator):
    analytics = aggregator.get_category_analytics("Geography")

    assert analytics.overview == GameTotals()
    assert analytics.top_players == []


def test_top_players_tie_breaks_by_name(session_factory):
    for name in ("Zed", "Amy", "Max"):
        add_session(session_factory, name, score=70, difficulty_level=4)

    analytics = StatisticsAggregator(session_factory, clock=lambda: NOW).get_difficulty_analytics(4)

    assert [p.player_name for p in analytics.top_players] == ["Amy", "Max", "Zed"]


@pytest.mark.parametrize("level", [0, 6])
def test_difficulty_analytics_level_out_of_range(aggregator, level):
    with pytest.raises(ValidationError) as exc_info:
        aggregator.get_difficulty_analytics(level)

    assert exc_info.value.field == "difficulty_level"


def test_category_analytics_requires_category(aggregator):
    with pytest.raises(ValidationError) as exc_info:
        aggregator.get_category_analytics("  ")

    assert exc_info.value.field == "category"


# ----------------------------------------------------------------------
# Trends
# ----------------------------------------------------------------------


def test_weekly_trends_start_on_monday(aggregator):
    trends = aggregator.get_game_trends(days=60, interval="week")

    assert trends.interval == "week"
    assert [t.period_start for t in trends.trends] == [
        utc(2024, 3, 4).date(),
        utc(2024, 2, 26).date(),
        utc(2024, 1, 15).date(),
    ]
    week = trends.trends[0]
    assert week.games_played == 4
    assert week.active_players == 3
    assert week.completed_games == 2
    assert week.completion_rate == 50.0
    assert week.average_score == 22.5


def test_monthly_trends(aggregator):
    trends = aggregator.get_game_trends(days=365, interval="month")

    assert [(t.period_start, t.games_played) for t in trends.trends] == [
        (utc(2024, 3, 1).date(), 5),
        (utc(2024, 1, 1).date(), 1),
    ]


def test_trend_window_counts_from_midnight(aggregator):
    trends = aggregator.get_game_trends(days=1)

    assert [t.period_start for t in trends.trends] == [
        utc(2024, 3, 10).date(),
        utc(2024, 3, 9).date(),
    ]


@pytest.mark.parametrize(
    "kwargs,field",
    [
        ({"days": 0}, "days"),
        ({"days": 366}, "days"),
        ({"interval": "year"}, "interval"),
    ],
)
def test_trend_parameters_validated(aggregator, kwargs, field):
    with pytest.raises(ValidationError) as exc_info:
        aggregator.get_game_trends(**kwargs)

    assert exc_info.value.field == field


# ----------------------------------------------------------------------
# Strategies and caching
# ----------------------------------------------------------------------


def test_row_and_store_game_views_agree(session_factory):
    _seed(session_factory)
    since = utc(2024, 1, 1)
    row, store = RowAggregationStrategy(), StoreAggregationStrategy()

    with read_scope(session_factory) as db:
        for name, args, kwargs in [
            ("game_totals", (), {}),
            ("game_totals", (), {"difficulty_level": 2}),
            ("game_totals", (), {"category": "History"}),
            ("difficulty_performance", (), {}),
            ("difficulty_performance", (), {"category": "Science"}),
            ("category_performance", (), {}),
            ("category_performance", (), {"difficulty_level": 2}),
            ("top_players", (), {}),
            ("top_players", (), {"category": "History", "limit": 1}),
            ("game_trends", (since,), {}),
            ("game_trends", (since, "week"), {}),
            ("game_trends", (since, "month"), {"difficulty_level": 2}),
        ]:
            expected = getattr(row, name)(db, *args, **kwargs)
            actual = getattr(store, name)(db, *args, **kwargs)
            assert actual == expected, (name, kwargs)


def test_game_overview_is_cached(aggregator, session_factory, cache):
    first = aggregator.get_game_overview()
    add_session(session_factory, "Newcomer", score=10)

    assert aggregator.get_game_overview() == first
    assert cache.get_stats()["hits"] == 1
