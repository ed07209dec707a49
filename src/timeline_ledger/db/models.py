"""SQLAlchemy models for the timeline ledger database.

IMPORTANT: All datetime fields store UTC. Use datetime.now(timezone.utc).
Naive datetimes read back from SQLite are UTC wall-clock values.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship

SESSION_STATUSES = ("active", "completed", "abandoned")
TERMINAL_STATUSES = ("completed", "abandoned")


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Card(Base):
    """Event card placed on the timeline. Managed by the catalog, read-only here."""

    __tablename__ = "cards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    date_occurred = Column(Date)
    category = Column(String(100), nullable=False)
    difficulty = Column(Integer, nullable=False, default=1)

    __table_args__ = (Index("ix_cards_category", "category"),)


class GameSession(Base):
    __tablename__ = "game_sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    player_name = Column(String(100), nullable=False)
    difficulty_level = Column(Integer, nullable=False)
    card_count = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    score = Column(Integer, nullable=False, default=0)
    total_moves = Column(Integer, nullable=False, default=0)
    correct_moves = Column(Integer, nullable=False, default=0)
    incorrect_moves = Column(Integer, nullable=False, default=0)
    start_time = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    end_time = Column(DateTime(timezone=True))
    duration_seconds = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=_utc_now)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)

    category_rows = relationship(
        "SessionCategory",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    moves = relationship(
        "GameMove",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="GameMove.move_number",
    )

    __table_args__ = (
        CheckConstraint(
            "difficulty_level >= 1 AND difficulty_level <= 5", name="ck_sessions_difficulty"
        ),
        CheckConstraint("card_count >= 1 AND card_count <= 50", name="ck_sessions_card_count"),
        CheckConstraint(
            "status IN ('active', 'completed', 'abandoned')", name="ck_sessions_status"
        ),
        CheckConstraint("score >= 0", name="ck_sessions_score"),
        CheckConstraint(
            "total_moves >= 0 AND correct_moves >= 0 AND incorrect_moves >= 0",
            name="ck_sessions_counters",
        ),
        Index("ix_game_sessions_player_name", "player_name"),
        Index("ix_game_sessions_status", "status"),
        Index("ix_game_sessions_start_time", "start_time"),
        Index("ix_game_sessions_end_time", "end_time"),
    )

    @property
    def categories(self) -> list[str]:
        return sorted(row.category for row in self.category_rows)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "player_name": self.player_name,
            "difficulty_level": self.difficulty_level,
            "card_count": self.card_count,
            "categories": self.categories,
            "status": self.status,
            "score": self.score or 0,
            "total_moves": self.total_moves or 0,
            "correct_moves": self.correct_moves or 0,
            "incorrect_moves": self.incorrect_moves or 0,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
        }


class SessionCategory(Base):
    """One category label selected for a session."""

    __tablename__ = "game_session_categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36), ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False
    )
    category = Column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("session_id", "category", name="uq_session_category"),
        Index("ix_session_categories_category", "category"),
    )

    session = relationship("GameSession", back_populates="category_rows")


class GameMove(Base):
    __tablename__ = "game_moves"

    id = Column(String(36), primary_key=True, default=_new_id)
    session_id = Column(
        String(36), ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False
    )
    card_id = Column(Integer, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False)
    position_before = Column(Integer)  # None: drawn, not yet on the timeline
    position_after = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    move_number = Column(Integer, nullable=False)
    time_taken_seconds = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (
        UniqueConstraint("session_id", "move_number", name="uq_session_move_number"),
        CheckConstraint("move_number >= 1", name="ck_moves_move_number"),
        Index("ix_game_moves_session", "session_id"),
        Index("ix_game_moves_card", "card_id"),
    )

    session = relationship("GameSession", back_populates="moves")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "card_id": self.card_id,
            "position_before": self.position_before,
            "position_after": self.position_after,
            "is_correct": self.is_correct,
            "move_number": self.move_number,
            "time_taken_seconds": self.time_taken_seconds,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
