"""Database module for timeline_ledger."""

from .models import (
    SESSION_STATUSES,
    TERMINAL_STATUSES,
    Base,
    Card,
    GameMove,
    GameSession,
    SessionCategory,
)
from .session import (
    create_db_engine,
    create_session_factory,
    init_db,
    read_scope,
    session_scope,
    sqlite_url,
)

__all__ = [
    "Base",
    "Card",
    "GameSession",
    "GameMove",
    "SessionCategory",
    "SESSION_STATUSES",
    "TERMINAL_STATUSES",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "read_scope",
    "session_scope",
    "sqlite_url",
]
