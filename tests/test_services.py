# tests/test_services.py
"""End-to-end flow through the wired components."""

import pytest

from fixtures.builders import utc
from timeline_ledger import build_engine_components
from timeline_ledger.config import STATISTICS_MODE_ENV, ConfigError, LedgerConfig
from timeline_ledger.db.models import Card
from timeline_ledger.db.session import session_scope, sqlite_url

NOW = utc(2024, 3, 10, 18)


@pytest.fixture
def services(tmp_path, monkeypatch):
    monkeypatch.delenv(STATISTICS_MODE_ENV, raising=False)
    config = LedgerConfig()
    config.database.url = sqlite_url(tmp_path / "services.db")
    services = build_engine_components(config, clock=lambda: NOW)
    yield services
    services.dispose()


def _cards(services, count=3):
    with session_scope(services.session_factory) as db:
        cards = [Card(title=f"Event {i}", category="History") for i in range(count)]
        db.add_all(cards)
        db.flush()
        return [c.id for c in cards]


def _play(services, player_name, card_ids, correctness, score):
    ledger = services.ledger
    game = ledger.create_session(
        {
            "player_name": player_name,
            "difficulty_level": 3,
            "card_count": len(card_ids),
            "categories": ["History"],
            "start_time": utc(2024, 3, 10, 17),
        }
    )
    ledger.create_moves_bulk(
        [
            {
                "session_id": game.id,
                "card_id": card_id,
                "position_after": number - 1,
                "is_correct": correct,
                "move_number": number,
            }
            for number, (card_id, correct) in enumerate(zip(card_ids, correctness), start=1)
        ]
    )
    return ledger.update_session_status(game.id, "completed", {"score": score})


def test_components_share_cache_and_monitor(services):
    assert services.statistics.cache is services.cache
    assert services.leaderboard.cache is services.cache
    assert services.progression.monitor is services.monitor
    assert services.statistics.progression is services.progression
    assert services.policy.mode == "hybrid"


def test_invalid_config_is_rejected(tmp_path):
    config = LedgerConfig()
    config.statistics.mode = "nope"

    with pytest.raises(ConfigError):
        build_engine_components(config)


def test_play_then_read_statistics_and_leaderboard(services):
    card_ids = _cards(services)
    finished = _play(services, "Ada", card_ids, [True, True, False], score=80)
    _play(services, "Grace", card_ids, [True, False, False], score=30)

    assert finished.total_moves == 3
    assert finished.duration_seconds == 3600

    stats = services.statistics.get_player_statistics("Ada")
    assert stats.total_games_won == 1
    assert stats.average_accuracy == 66.67
    assert stats.total_play_time_seconds == 3600

    board = services.leaderboard.get_leaderboard(period="daily")
    assert [e.player_name for e in board] == ["Ada", "Grace"]
    assert board[0].accuracy_percentage == 66.67

    rankings = services.leaderboard.get_player_rankings("Grace")
    assert rankings.global_rank == 2
    assert rankings.categories == {"History": 2}

    metrics = services.monitor.get_metrics()
    assert metrics["error_calls"] == 0
    assert metrics["completed_calls"] == 3
