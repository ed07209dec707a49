# tests/conftest.py
import pytest

from timeline_ledger.cache import QueryCache
from timeline_ledger.db.models import Card
from timeline_ledger.db.session import create_session_factory, init_db, session_scope, sqlite_url
from timeline_ledger.ledger import SessionLedger
from timeline_ledger.monitor import PerformanceMonitor


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    engine = init_db(sqlite_url(tmp_path / "ledger.db"))
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def card_ids(session_factory):
    """Five catalog cards; returns their ids."""
    with session_scope(session_factory) as db:
        cards = [
            Card(title=f"Event {i}", category="History", difficulty=1) for i in range(1, 6)
        ]
        db.add_all(cards)
        db.flush()
        ids = [card.id for card in cards]
    return ids


@pytest.fixture
def ledger(session_factory):
    return SessionLedger(session_factory)


@pytest.fixture
def cache(fake_clock):
    return QueryCache(clock=fake_clock)


@pytest.fixture
def monitor(fake_clock):
    return PerformanceMonitor(clock=fake_clock)
