"""timeline_ledger: session ledger and statistics engine for a history timeline card game."""

from .ledger import SessionLedger
from .services import LedgerServices, build_engine_components
from .version import get_package_version

__version__ = get_package_version()
__author__ = "timeline_ledger contributors"
__description__ = "Session ledger, statistics and leaderboards for a history timeline card game"

__all__ = ["LedgerServices", "SessionLedger", "build_engine_components"]
