import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# --- Ensure imports always work, even after chdir into tmp dirs ---

HERE = os.path.abspath(os.path.dirname(__file__))
ROOT = os.path.abspath(os.path.join(HERE, "..", ".."))

if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# keep test runs from writing logs into the working tree
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "metrocard-test-logs"))

from metrocard.core.ledger import Ledger  # noqa: E402
from metrocard.utils.store import JsonStore  # noqa: E402


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, current: datetime) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current = self.current + timedelta(**delta)

    def set(self, current: datetime) -> None:
        self.current = current


# --- Fixtures ---

@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 5, 15, 8, 0, tzinfo=timezone.utc))

@pytest.fixture
def data_path(tmp_path):
    return tmp_path / "data" / "cards.json"

@pytest.fixture
def store(data_path):
    return JsonStore(data_path)

@pytest.fixture
def ledger(store, clock):
    return Ledger(store, clock)

@pytest.fixture
def card_id(ledger):
    """A freshly added card named 'ICBC' for user 42."""
    assert ledger.add_card(42, "ICBC")
    return ledger.get_cards(42)[0].id
