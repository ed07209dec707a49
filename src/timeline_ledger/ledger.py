"""Session ledger: sessions, moves and their counters.

Counters on ``game_sessions`` only ever change through relative UPDATEs
(``total_moves = total_moves + n``) issued in the same transaction as the
move inserts, so concurrent writers on one session never lose an increment.
The storage engine's row locking is the only serialization point.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .analytics.formulas import accuracy, round2
from .analytics.types import SessionMoveStats
from .db.models import TERMINAL_STATUSES, GameMove, GameSession, SessionCategory
from .db.session import read_scope
from .errors import DatabaseError, NotFoundError, TimelineLedgerError, ValidationError
from .schemas import (
    MoveInput,
    MoveUpdate,
    SessionCreate,
    SessionStatusPatch,
    parse_model,
)
from .utils.timeutil import ensure_utc, utc_now, whole_seconds_between

logger = logging.getLogger(__name__)


def _classify_integrity_error(
    exc: IntegrityError, operation: str, card_ids: Iterable[int]
) -> TimelineLedgerError:
    """Map a constraint violation on move insert to the ledger error taxonomy."""
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    if "foreign key" in message:
        ids = sorted(set(card_ids))
        return NotFoundError("Card", ids[0] if len(ids) == 1 else ids)
    if "unique" in message or "duplicate" in message:
        return ValidationError(
            "move_number already recorded for this session", field="move_number"
        )
    return DatabaseError(operation, exc)


class SessionLedger:
    """Owns GameSession and GameMove rows.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the store
        clock: Returns the current time (aware UTC); injectable for tests
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] | None = None,
    ):
        self._factory = session_factory
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session_input: SessionCreate | dict[str, Any]) -> GameSession:
        """Start a new session in ``active`` status with zero counters.

        Raises:
            ValidationError: If player name, difficulty, card count or
                categories are missing or out of range
        """
        data = parse_model(SessionCreate, session_input)
        start_time = ensure_utc(data.start_time) or self._clock()

        db = self._factory()
        try:
            game = GameSession(
                player_name=data.player_name,
                difficulty_level=data.difficulty_level,
                card_count=data.card_count,
                status="active",
                score=0,
                total_moves=0,
                correct_moves=0,
                incorrect_moves=0,
                start_time=start_time,
                category_rows=[SessionCategory(category=c) for c in data.categories],
            )
            db.add(game)
            db.commit()
            logger.info(f"Created game session {game.id} for player {game.player_name}")
            return game
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error creating session for player {data.player_name}: {e}")
            raise DatabaseError("create_session", e) from e
        finally:
            db.close()

    def get_session(self, session_id: str) -> GameSession:
        """Fetch one session.

        Raises:
            NotFoundError: If no session has this id
        """
        with read_scope(self._factory) as db:
            game = db.get(GameSession, session_id)
            if game is None:
                raise NotFoundError("Session", session_id)
            return game

    def get_player_sessions(self, player_name: str, limit: int = 10) -> list[GameSession]:
        """Most recent sessions of a player, newest first."""
        if limit < 1:
            raise ValidationError("limit must be at least 1", field="limit")
        with read_scope(self._factory) as db:
            stmt = (
                select(GameSession)
                .where(GameSession.player_name == player_name)
                .order_by(GameSession.start_time.desc(), GameSession.id)
                .limit(limit)
            )
            return list(db.scalars(stmt).all())

    def update_session_status(
        self,
        session_id: str,
        status: str,
        patch: SessionStatusPatch | dict[str, Any] | None = None,
    ) -> GameSession:
        """Move an active session to ``completed`` or ``abandoned``.

        Merges ``patch`` (score, end_time, duration_seconds) in the same
        transaction. ``end_time`` defaults to now and ``duration_seconds``
        to the elapsed time since ``start_time``.

        Raises:
            ValidationError: Unknown target status or session not active
            NotFoundError: If the session does not exist
        """
        if status not in TERMINAL_STATUSES:
            raise ValidationError(
                f"Invalid status transition target '{status}'. "
                f"Must be one of: {', '.join(TERMINAL_STATUSES)}",
                field="status",
            )
        fields = parse_model(SessionStatusPatch, patch or {})
        end_time = ensure_utc(fields.end_time) or self._clock()

        values: dict[str, Any] = {"status": status, "end_time": end_time}
        if fields.score is not None:
            values["score"] = fields.score
        if fields.duration_seconds is not None:
            values["duration_seconds"] = fields.duration_seconds

        db = self._factory()
        try:
            # Status guard in the WHERE clause keeps the write first in the
            # transaction and rejects terminal sessions atomically
            result = db.execute(
                update(GameSession)
                .where(GameSession.id == session_id, GameSession.status == "active")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise self._inactive_or_missing(db, session_id)

            game = db.get(GameSession, session_id, populate_existing=True)
            if fields.duration_seconds is None:
                game.duration_seconds = whole_seconds_between(game.start_time, end_time)

            db.commit()
            logger.info(f"Updated session {session_id} status to: {status}")
            return game
        except TimelineLedgerError:
            db.rollback()
            logger.error(f"Rejected status update for session {session_id} to {status}")
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error updating session {session_id} status: {e}")
            raise DatabaseError("update_session_status", e) from e
        finally:
            db.close()

    def delete_session(self, session_id: str) -> None:
        """Hard-delete a session; its moves and categories cascade."""
        self._hard_delete(GameSession, session_id, "Session")

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def record_move(self, move_input: MoveInput | dict[str, Any]) -> GameMove:
        """Insert one move and bump its session's counters atomically.

        Raises:
            ValidationError: Bad input, duplicate move number, or session
                not active
            NotFoundError: If the session or card does not exist
            DatabaseError: Any other storage failure
        """
        data = parse_model(MoveInput, move_input)
        correct = 1 if data.is_correct else 0

        db = self._factory()
        try:
            self._increment_counters(db, data.session_id, correct, 1 - correct)
            move = GameMove(**data.model_dump())
            db.add(move)
            db.flush()
            db.commit()
            logger.info(
                f"Recorded move {data.move_number} for session {data.session_id}"
            )
            return move
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Error recording move for session {data.session_id}: {e.orig}")
            raise _classify_integrity_error(e, "record_move", [data.card_id]) from e
        except TimelineLedgerError:
            db.rollback()
            logger.error(f"Rejected move {data.move_number} for session {data.session_id}")
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error recording move for session {data.session_id}: {e}")
            raise DatabaseError("record_move", e) from e
        finally:
            db.close()

    def create_moves_bulk(
        self, move_inputs: Iterable[MoveInput | dict[str, Any]]
    ) -> list[GameMove]:
        """Insert a batch of moves with one counter delta per session.

        All inserts and increments commit together or not at all. An empty
        batch returns ``[]`` without opening a transaction.
        """
        parsed = [parse_model(MoveInput, item) for item in move_inputs]
        if not parsed:
            return []

        # session_id -> [correct, incorrect], in first-seen order
        deltas: OrderedDict[str, list[int]] = OrderedDict()
        for data in parsed:
            counts = deltas.setdefault(data.session_id, [0, 0])
            counts[0 if data.is_correct else 1] += 1

        db = self._factory()
        try:
            for session_id, (correct, incorrect) in deltas.items():
                self._increment_counters(db, session_id, correct, incorrect)
            moves = [GameMove(**data.model_dump()) for data in parsed]
            db.add_all(moves)
            db.flush()
            db.commit()
            logger.info(
                f"Created {len(moves)} moves for sessions {', '.join(deltas.keys())}"
            )
            return moves
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Error creating moves bulk: {e.orig}")
            raise _classify_integrity_error(
                e, "create_moves_bulk", [d.card_id for d in parsed]
            ) from e
        except TimelineLedgerError:
            db.rollback()
            logger.error(f"Rejected bulk of {len(parsed)} moves")
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error creating moves bulk: {e}")
            raise DatabaseError("create_moves_bulk", e) from e
        finally:
            db.close()

    def get_session_moves(self, session_id: str) -> list[GameMove]:
        """Moves of a session ordered by move number."""
        with read_scope(self._factory) as db:
            if db.get(GameSession, session_id) is None:
                raise NotFoundError("Session", session_id)
            stmt = (
                select(GameMove)
                .where(GameMove.session_id == session_id)
                .order_by(GameMove.move_number.asc())
            )
            return list(db.scalars(stmt).all())

    def get_session_move_stats(self, session_id: str) -> SessionMoveStats:
        """Accuracy and timing figures over a session's recorded moves."""
        moves = self.get_session_moves(session_id)

        total = len(moves)
        correct = sum(1 for m in moves if m.is_correct)
        timings = [m.time_taken_seconds for m in moves if m.time_taken_seconds is not None]

        return SessionMoveStats(
            total_moves=total,
            correct_moves=correct,
            incorrect_moves=total - correct,
            accuracy=accuracy(correct, total),
            average_move_time=round2(sum(timings) / len(timings)) if timings else 0.0,
            fastest_move=min(timings) if timings else 0,
            slowest_move=max(timings) if timings else 0,
            moves_with_timing=len(timings),
        )

    def update_move(self, move_id: str, patch: MoveUpdate | dict[str, Any]) -> GameMove:
        """Administrative correction of a move. Session counters are not touched."""
        fields = parse_model(MoveUpdate, patch).model_dump(exclude_none=True)
        if not fields:
            raise ValidationError("No move fields to update")

        db = self._factory()
        try:
            move = db.get(GameMove, move_id)
            if move is None:
                raise NotFoundError("Move", move_id)
            for name, value in fields.items():
                setattr(move, name, value)
            db.commit()
            logger.info(f"Updated move {move_id}")
            return move
        except TimelineLedgerError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error updating move {move_id}: {e}")
            raise DatabaseError("update_move", e) from e
        finally:
            db.close()

    def delete_move(self, move_id: str) -> None:
        """Hard-delete one move. Session counters are not touched."""
        self._hard_delete(GameMove, move_id, "Move")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _increment_counters(
        self, db: Session, session_id: str, correct: int, incorrect: int
    ) -> None:
        """Relative counter UPDATE on an active session."""
        result = db.execute(
            update(GameSession)
            .where(GameSession.id == session_id, GameSession.status == "active")
            .values(
                total_moves=GameSession.total_moves + (correct + incorrect),
                correct_moves=GameSession.correct_moves + correct,
                incorrect_moves=GameSession.incorrect_moves + incorrect,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise self._inactive_or_missing(db, session_id)

    def _inactive_or_missing(self, db: Session, session_id: str) -> TimelineLedgerError:
        status = db.scalar(select(GameSession.status).where(GameSession.id == session_id))
        if status is None:
            return NotFoundError("Session", session_id)
        return ValidationError(
            f"Session {session_id} is {status}; only active sessions accept changes",
            field="status",
        )

    def _hard_delete(self, model: type, row_id: str, resource: str) -> None:
        db = self._factory()
        try:
            result = db.execute(delete(model).where(model.id == row_id))
            if result.rowcount == 0:
                raise NotFoundError(resource, row_id)
            db.commit()
            logger.info(f"Deleted {resource.lower()} {row_id}")
        except TimelineLedgerError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error deleting {resource.lower()} {row_id}: {e}")
            raise DatabaseError(f"delete_{resource.lower()}", e) from e
        finally:
            db.close()
