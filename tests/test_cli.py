# tests/test_cli.py
import json

import pytest

from fixtures.builders import add_session
from timeline_ledger.cli import main
from timeline_ledger.config import STATISTICS_MODE_ENV
from timeline_ledger.db.session import create_session_factory, init_db, sqlite_url


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    # Keep a developer's ~/.timeline_ledger/config.toml out of the tests
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv(STATISTICS_MODE_ENV, raising=False)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "cli.db"
    engine = init_db(sqlite_url(path))
    factory = create_session_factory(engine)
    add_session(factory, "Ada", score=90, total_moves=10, correct_moves=9,
                categories=("History", "Science"))
    add_session(factory, "Ada", score=50, total_moves=10, correct_moves=6)
    add_session(factory, "Grace", score=70, total_moves=10, correct_moves=7)
    engine.dispose()
    return path


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "usage: timeline-ledger" in capsys.readouterr().out


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])

    assert exc_info.value.code == 0
    assert "timeline-ledger" in capsys.readouterr().out


def test_init_db_creates_file(tmp_path, capsys):
    path = tmp_path / "fresh.db"

    assert main(["--db", str(path), "init-db"]) == 0

    assert path.exists()
    assert "Initialized database" in capsys.readouterr().out


def test_stats_json(db_path, capsys):
    assert main(["--db", str(db_path), "--json", "stats", "Ada"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["player_name"] == "Ada"
    assert data["total_games_played"] == 2
    assert data["average_accuracy"] == 75.0
    assert "median_score" not in data


def test_stats_advanced_json(db_path, capsys):
    assert main(["--db", str(db_path), "--json", "stats", "Ada", "--advanced"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["median_score"] == 70.0
    assert data["score_variance"] == 800.0


def test_stats_text(db_path, capsys):
    assert main(["--db", str(db_path), "stats", "Grace"]) == 0

    out = capsys.readouterr().out
    assert "Statistics for Grace" in out
    assert "Win rate: 100.00%" in out


def test_categories_text(db_path, capsys):
    assert main(["--db", str(db_path), "categories", "Ada"]) == 0

    out = capsys.readouterr().out
    assert "History" in out
    assert "Science" in out


def test_progression_json(db_path, capsys):
    assert main(["--db", str(db_path), "--json", "progression", "Ada"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["total_games"] == 2
    assert len(data["progression"]) == 2


def test_leaderboard_json(db_path, capsys):
    assert main(["--db", str(db_path), "--json", "leaderboard", "--limit", "5"]) == 0

    rows = json.loads(capsys.readouterr().out)
    assert [r["player_name"] for r in rows] == ["Ada", "Grace"]
    assert rows[0]["rank"] == 1


def test_leaderboard_category_text(db_path, capsys):
    assert main(["--db", str(db_path), "leaderboard", "--category", "Science"]) == 0

    out = capsys.readouterr().out
    assert "Leaderboard (Science)" in out
    assert "Ada" in out
    assert "Grace" not in out


def test_summary_text(db_path, capsys):
    assert main(["--db", str(db_path), "summary", "Ada"]) == 0

    out = capsys.readouterr().out
    assert "Summary for Ada" in out
    assert "Favorite categories: History (2), Science (1)" in out


def test_validation_error_json(db_path, capsys):
    assert main(["--db", str(db_path), "--json", "leaderboard", "--limit", "500"]) == 1

    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "error"
    assert data["error"]["type"] == "ValidationError"
    assert data["error"]["details"]["field"] == "limit"


def test_validation_error_text(db_path, capsys):
    assert main(["--db", str(db_path), "stats", "  "]) == 1

    assert "Error: Player name is required" in capsys.readouterr().err


def test_bad_config_file(tmp_path, capsys):
    config_file = tmp_path / "config.toml"
    config_file.write_text('[statistics]\nmode = "warp"\n')

    assert main(["--config", str(config_file), "stats", "Ada"]) == 1

    assert "Configuration error" in capsys.readouterr().err


def test_overview_json(db_path, capsys):
    assert main(["--db", str(db_path), "--json", "overview"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["overall"]["total_games"] == 3
    assert data["overall"]["unique_players"] == 2
    assert data["category_performance"][0]["category"] == "History"


def test_overview_category_text(db_path, capsys):
    assert main(["--db", str(db_path), "overview", "--category", "Science"]) == 0

    out = capsys.readouterr().out
    assert "Overview (Science)" in out
    assert "top: Ada avg 90.00" in out


def test_overview_difficulty_out_of_range(db_path, capsys):
    assert main(["--db", str(db_path), "--json", "overview", "--difficulty", "9"]) == 1

    data = json.loads(capsys.readouterr().out)
    assert data["error"]["details"]["field"] == "difficulty_level"


def test_trends_json(db_path, capsys):
    assert main(["--db", str(db_path), "--json", "trends", "--interval", "week"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["interval"] == "week"
    assert data["days"] == 30
    assert isinstance(data["trends"], list)
