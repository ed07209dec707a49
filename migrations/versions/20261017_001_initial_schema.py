"""Initial schema: cards, game sessions, session categories and moves.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 09:00:00+00:00

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # CARD CATALOG (read-only from the ledger's point of view)
    # ==========================================================================

    op.create_table(
        "cards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("date_occurred", sa.Date(), nullable=True),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("difficulty", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_cards_category", "cards", ["category"])

    # ==========================================================================
    # GAME SESSIONS
    # ==========================================================================

    op.create_table(
        "game_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("player_name", sa.String(100), nullable=False),
        sa.Column("difficulty_level", sa.Integer(), nullable=False),
        sa.Column("card_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
        # Counters, only ever changed by relative increments
        sa.Column("total_moves", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("correct_moves", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("incorrect_moves", sa.Integer(), nullable=False, server_default="0"),
        # Timestamps (UTC)
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "difficulty_level >= 1 AND difficulty_level <= 5", name="ck_sessions_difficulty"
        ),
        sa.CheckConstraint("card_count >= 1 AND card_count <= 50", name="ck_sessions_card_count"),
        sa.CheckConstraint(
            "status IN ('active', 'completed', 'abandoned')", name="ck_sessions_status"
        ),
        sa.CheckConstraint("score >= 0", name="ck_sessions_score"),
        sa.CheckConstraint(
            "total_moves >= 0 AND correct_moves >= 0 AND incorrect_moves >= 0",
            name="ck_sessions_counters",
        ),
    )
    op.create_index("ix_game_sessions_player_name", "game_sessions", ["player_name"])
    op.create_index("ix_game_sessions_status", "game_sessions", ["status"])
    op.create_index("ix_game_sessions_start_time", "game_sessions", ["start_time"])
    op.create_index("ix_game_sessions_end_time", "game_sessions", ["end_time"])

    op.create_table(
        "game_session_categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            sa.String(36),
            sa.ForeignKey("game_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category", sa.String(100), nullable=False),
        sa.UniqueConstraint("session_id", "category", name="uq_session_category"),
    )
    op.create_index(
        "ix_session_categories_category", "game_session_categories", ["category"]
    )

    # ==========================================================================
    # MOVES
    # ==========================================================================

    op.create_table(
        "game_moves",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(36),
            sa.ForeignKey("game_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "card_id",
            sa.Integer(),
            sa.ForeignKey("cards.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position_before", sa.Integer(), nullable=True),
        sa.Column("position_after", sa.Integer(), nullable=False),
        sa.Column("is_correct", sa.Boolean(), nullable=False),
        sa.Column("move_number", sa.Integer(), nullable=False),
        sa.Column("time_taken_seconds", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("session_id", "move_number", name="uq_session_move_number"),
        sa.CheckConstraint("move_number >= 1", name="ck_moves_move_number"),
    )
    op.create_index("ix_game_moves_session", "game_moves", ["session_id"])
    op.create_index("ix_game_moves_card", "game_moves", ["card_id"])


def downgrade() -> None:
    op.drop_index("ix_game_moves_card", table_name="game_moves")
    op.drop_index("ix_game_moves_session", table_name="game_moves")
    op.drop_table("game_moves")

    op.drop_index("ix_session_categories_category", table_name="game_session_categories")
    op.drop_table("game_session_categories")

    op.drop_index("ix_game_sessions_end_time", table_name="game_sessions")
    op.drop_index("ix_game_sessions_start_time", table_name="game_sessions")
    op.drop_index("ix_game_sessions_status", table_name="game_sessions")
    op.drop_index("ix_game_sessions_player_name", table_name="game_sessions")
    op.drop_table("game_sessions")

    op.drop_index("ix_cards_category", table_name="cards")
    op.drop_table("cards")
