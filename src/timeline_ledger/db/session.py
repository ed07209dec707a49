"""Database engine and session management.

Components receive a session factory explicitly; nothing here keeps a
module-level engine.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

# Seconds a SQLite writer waits for the row lock held by another writer
SQLITE_BUSY_TIMEOUT_SECONDS = 30


def sqlite_url(db_path: Path) -> str:
    """Build a SQLite URL for a database file, creating its directory."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for the given database URL.

    SQLite connections get foreign key enforcement and a busy timeout so
    concurrent writers serialize on the database lock instead of failing.
    """
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(url, echo=echo, pool_pre_ping=True)


def init_db(url: str, echo: bool = False) -> Engine:
    """Create the engine and any missing tables.

    Args:
        url: SQLAlchemy database URL

    Returns:
        SQLAlchemy engine
    """
    engine = create_db_engine(url, echo=echo)
    Base.metadata.create_all(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory handed to every component."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations.

    Commits on success; rolls back and re-raises on any exception.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def read_scope(factory: sessionmaker) -> Iterator[Session]:
    """Provide a read-only session that is always closed."""
    session = factory()
    try:
        yield session
    finally:
        session.close()
