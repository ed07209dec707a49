"""Command-line interface for timeline_ledger."""

import argparse
import json
import logging
import sys
from pathlib import Path

from . import __version__
from .config import (
    ConfigError,
    LedgerConfig,
    default_config,
    get_default_config_path,
    load_config,
)
from .db.session import init_db, sqlite_url
from .errors import TimelineLedgerError
from .services import build_engine_components

logger = logging.getLogger(__name__)


def _load_cli_config(args) -> LedgerConfig:
    """Resolve configuration from --config, the default path or built-ins."""
    if args.config:
        config = load_config(Path(args.config))
    else:
        default_path = get_default_config_path()
        config = load_config(default_path) if default_path.exists() else default_config()

    if args.db:
        config.database.url = sqlite_url(Path(args.db))
    return config


def _configure_logging(args, config: LedgerConfig) -> None:
    level = logging.DEBUG if args.verbose else config.get_log_level()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _print_error(args, e: Exception) -> None:
    if isinstance(e, TimelineLedgerError):
        if args.json:
            error_result = {
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                    "details": e.details,
                },
                "status": "error",
            }
            print(json.dumps(error_result, indent=2, default=str))
        else:
            print(f"Error: {e}", file=sys.stderr)
            if "suggested_action" in e.details:
                print(f"Suggestion: {e.details['suggested_action']}", file=sys.stderr)
        return

    if args.json:
        error_result = {
            "error": {
                "type": "UnexpectedError",
                "message": f"Unexpected error: {e}",
                "details": {},
            },
            "status": "error",
        }
        print(json.dumps(error_result, indent=2))
    else:
        print(f"Unexpected error: {e}", file=sys.stderr)


def _print_payload(args, payload, render) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        render(payload)


def handle_init_db_command(args, config: LedgerConfig) -> int:
    """Create the database schema."""
    engine = init_db(config.database.url, echo=config.database.echo)
    engine.dispose()
    print(f"Initialized database: {config.database.url}")
    return 0


def handle_stats_command(args, services) -> int:
    """Print a player's statistics."""
    if args.advanced:
        stats = services.statistics.get_player_advanced_statistics(args.player)
    else:
        stats = services.statistics.get_player_statistics(args.player)

    def render(data):
        print(f"Statistics for {data['player_name']}")
        print(
            f"Games: {data['total_games_played']} "
            f"(won {data['total_games_won']}, lost {data['total_games_lost']}, "
            f"abandoned {data['total_games_abandoned']})"
        )
        print(f"Win rate: {data['win_rate']:.2f}%")
        print(f"Accuracy: {data['average_accuracy']:.2f}%")
        print(f"Average score: {data['average_score_per_game']:.2f}")
        print(f"Best / worst score: {data['best_score']} / {data['worst_score']}")
        print(f"Play time: {data['total_play_time_seconds']}s")
        if "median_score" in data:
            print(
                f"Score quartiles: {data['q1_score']:.2f} / {data['median_score']:.2f} / "
                f"{data['q3_score']:.2f} (stddev {data['score_stddev']:.2f})"
            )
        if data["last_played_at"]:
            print(f"Last played: {data['last_played_at']}")

    _print_payload(args, stats.to_dict(), render)
    return 0


def handle_categories_command(args, services) -> int:
    """Print per-category statistics."""
    buckets = services.statistics.get_category_statistics(args.player)

    def render(rows):
        if not rows:
            print(f"No games recorded for {args.player}")
            return
        print(f"{'Category':<24} {'Games':>6} {'Won':>5} {'Avg':>8} {'Acc %':>7}")
        for row in rows:
            print(
                f"{row['category']:<24} {row['games_played']:>6} {row['games_won']:>5} "
                f"{row['average_score']:>8.2f} {row['accuracy']:>7.2f}"
            )

    _print_payload(args, [b.to_dict() for b in buckets], render)
    return 0


def handle_progression_command(args, services) -> int:
    """Print a player's progression and trend."""
    report = services.progression.get_player_progression(args.player)

    def render(data):
        print(f"Progression for {data['player_name']}: {data['total_games']} completed games")
        for entry in data["progression"]:
            print(
                f"  #{entry['game_number']:<4} score {entry['score']:>5}  "
                f"accuracy {entry['accuracy']:>6.2f}%  difficulty {entry['difficulty_level']}"
            )
        improvement = data["improvement"]
        print(
            f"Score trend: {improvement['early_avg_score']:.2f} -> "
            f"{improvement['recent_avg_score']:.2f} ({improvement['score_improvement']:+.2f})"
        )
        print(
            f"Accuracy trend: {improvement['early_avg_accuracy']:.2f}% -> "
            f"{improvement['recent_avg_accuracy']:.2f}% "
            f"({improvement['accuracy_improvement']:+.2f})"
        )

    _print_payload(args, report.to_dict(), render)
    return 0


def handle_leaderboard_command(args, services) -> int:
    """Print a leaderboard."""
    entries = services.leaderboard.get_leaderboard(
        limit=args.limit, category=args.category, period=args.period
    )

    def render(rows):
        title = args.category or args.period
        print(f"Leaderboard ({title})")
        if not rows:
            print("  No ranked games yet")
            return
        for row in rows:
            print(
                f"{row['rank']:>3}. {row['player_name']:<24} avg {row['avg_score']:>8.2f}  "
                f"acc {row['accuracy_percentage']:>6.2f}%  games {row['games_played']}"
            )

    _print_payload(args, [e.to_dict() for e in entries], render)
    return 0


def handle_summary_command(args, services) -> int:
    """Print the full player summary."""
    summary = services.statistics.get_player_summary(args.player)

    def render(data):
        overview = data["overview"]
        print(f"Summary for {data['player_name']}")
        print(
            f"Games: {overview['total_games_played']}  "
            f"Win rate: {overview['win_rate']:.2f}%  "
            f"Accuracy: {overview['average_accuracy']:.2f}%"
        )
        favorites = ", ".join(
            f"{f['category']} ({f['play_count']})" for f in data["favorite_categories"]
        )
        print(f"Favorite categories: {favorites or '-'}")
        print(f"Favorite difficulty: {data['favorite_difficulty']['difficulty_level']}")
        print(
            f"Score improvement: {data['improvement']['score_improvement']:+.2f} "
            f"over {data['total_completed_games']} completed games"
        )
        print(f"Active days (30d): {len(data['last_30_days'])}")
        print(f"Active weeks (12w): {len(data['last_12_weeks'])}")

    _print_payload(args, summary.to_dict(), render)
    return 0


def _render_totals(totals) -> None:
    print(
        f"Games: {totals['total_games']} (completed {totals['completed_games']}, "
        f"abandoned {totals['abandoned_games']})  Players: {totals['unique_players']}"
    )
    print(
        f"Completion rate: {totals['completion_rate']:.2f}%  "
        f"Average score: {totals['average_score']:.2f}  "
        f"Accuracy: {totals['average_accuracy']:.2f}%"
    )


def handle_overview_command(args, services) -> int:
    """Print game-wide analytics, optionally for one difficulty or category."""
    totals_key, split_key = "overview", "category_performance"
    if args.difficulty is not None:
        result = services.statistics.get_difficulty_analytics(args.difficulty)
        title = f"difficulty {args.difficulty}"
    elif args.category:
        result = services.statistics.get_category_analytics(args.category)
        title, split_key = args.category, "difficulty_performance"
    else:
        result = services.statistics.get_game_overview()
        title, totals_key = "all games", "overall"

    def render(data):
        print(f"Overview ({title})")
        _render_totals(data[totals_key])
        for row in data[split_key]:
            label = row.get("category") or f"difficulty {row['difficulty_level']}"
            print(
                f"  {label:<24} games {row['games_played']:>5}  "
                f"win {row['win_rate']:>6.2f}%  avg {row['average_score']:>8.2f}"
            )
        for player in data.get("top_players", []):
            print(f"  top: {player['player_name']} avg {player['average_score']:.2f}")

    _print_payload(args, result.to_dict(), render)
    return 0


def handle_trends_command(args, services) -> int:
    """Print game activity over time."""
    trends = services.statistics.get_game_trends(days=args.days, interval=args.interval)

    def render(data):
        print(f"Trends over {data['days']} days by {data['interval']}")
        if not data["trends"]:
            print("  No games in this window")
            return
        for point in data["trends"]:
            print(
                f"  {point['period_start']}  games {point['games_played']:>5}  "
                f"players {point['active_players']:>4}  "
                f"avg {point['average_score']:>8.2f}"
            )

    _print_payload(args, trends.to_dict(), render)
    return 0


SERVICE_HANDLERS = {
    "stats": handle_stats_command,
    "categories": handle_categories_command,
    "progression": handle_progression_command,
    "leaderboard": handle_leaderboard_command,
    "summary": handle_summary_command,
    "overview": handle_overview_command,
    "trends": handle_trends_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timeline-ledger",
        description="Session ledger, statistics and leaderboards for the timeline card game",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"timeline-ledger {__version__}",
    )
    parser.add_argument("--config", type=str, help="Path to a TOML config file")
    parser.add_argument("--db", type=str, help="SQLite database file (overrides config)")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results in machine-readable JSON format",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create the database schema")

    stats_parser = subparsers.add_parser("stats", help="Show a player's statistics")
    stats_parser.add_argument("player", type=str, help="Player name")
    stats_parser.add_argument(
        "--advanced",
        action="store_true",
        help="Include score quartiles, standard deviation and variance",
    )

    categories_parser = subparsers.add_parser(
        "categories", help="Show a player's per-category statistics"
    )
    categories_parser.add_argument("player", type=str, help="Player name")

    progression_parser = subparsers.add_parser(
        "progression", help="Show a player's progression over completed games"
    )
    progression_parser.add_argument("player", type=str, help="Player name")

    leaderboard_parser = subparsers.add_parser("leaderboard", help="Show a leaderboard")
    leaderboard_parser.add_argument(
        "--limit", type=int, default=10, help="Number of players (1-100, default: 10)"
    )
    leaderboard_parser.add_argument("--category", type=str, help="Only games in this category")
    leaderboard_parser.add_argument(
        "--period",
        choices=["all", "daily", "weekly"],
        default="all",
        help="Time window (default: all)",
    )

    summary_parser = subparsers.add_parser("summary", help="Show a full player summary")
    summary_parser.add_argument("player", type=str, help="Player name")

    overview_parser = subparsers.add_parser("overview", help="Show game-wide analytics")
    scope = overview_parser.add_mutually_exclusive_group()
    scope.add_argument("--difficulty", type=int, help="Only games at this level (1-5)")
    scope.add_argument("--category", type=str, help="Only games in this category")

    trends_parser = subparsers.add_parser("trends", help="Show game activity over time")
    trends_parser.add_argument(
        "--days", type=int, default=30, help="Window in days (1-365, default: 30)"
    )
    trends_parser.add_argument(
        "--interval",
        choices=["day", "week", "month"],
        default="day",
        help="Bucket size (default: day)",
    )

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = _load_cli_config(args)
        config.validate()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    _configure_logging(args, config)

    try:
        if args.command == "init-db":
            return handle_init_db_command(args, config)

        services = build_engine_components(config)
        try:
            return SERVICE_HANDLERS[args.command](args, services)
        finally:
            services.dispose()
    except Exception as e:
        logger.debug(f"Command {args.command} failed", exc_info=True)
        _print_error(args, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
