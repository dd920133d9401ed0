import pytest
import sys
import os
from datetime import datetime, timedelta, timezone
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

import db as db_module
from errors import StorageError
from portfolio import PortfolioStore

# ── Minimal test portfolio (clean round numbers for easy mental math) ──
# Values: ETF 2500, Trading 5000 (AAPL 1000 + MSFT 2000 + NVDA 2000), Hedge 500, cash 2000
# Total: 10000 → ETF 25%, Trading 50%, Hedge+cash 25%, HedgeOnly 5%
TEST_HOLDINGS = [
    {"symbol": "VOO",  "shares": 5,  "avg_cost": 400.00, "current_price": 500.00, "prev_close": 490.00, "bucket": "ETF"},
    {"symbol": "AAPL", "shares": 10, "avg_cost": 90.00,  "current_price": 100.00, "prev_close": 90.00,  "bucket": "Trading"},
    {"symbol": "MSFT", "shares": 5,  "avg_cost": 300.00, "current_price": 400.00, "prev_close": 400.00, "bucket": "Trading"},
    {"symbol": "NVDA", "shares": 20, "avg_cost": 100.00, "current_price": 100.00, "prev_close": 100.00, "bucket": "Trading"},
    {"symbol": "GLD",  "shares": 2,  "avg_cost": 250.00, "current_price": 250.00, "prev_close": 250.00, "bucket": "Hedge"},
]
TEST_CASH = 2000.00

# 2024-01-15 10:00 in UTC+8 (02:00 UTC) — inside the 2024-01-15 trading day
DAY1_MORNING = datetime(2024, 1, 15, 2, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that tests move by hand."""

    def __init__(self, now: datetime = DAY1_MORNING):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class MemoryStorage:
    """In-memory stand-in for the db module's blob functions."""

    def __init__(self, blobs: dict | None = None):
        self.blobs = dict(blobs or {})
        self.writes = []
        self.fail_writes = False

    def load_blob(self, key):
        return self.blobs.get(key)

    def save_blobs(self, blobs):
        if self.fail_writes:
            raise StorageError("disk full")
        self.writes.append(dict(blobs))
        self.blobs.update(blobs)


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    """
    Creates an isolated SQLite DB in a temp directory.
    Monkeypatches db_module.DB_PATH so all db.py calls use this temp file.
    Runs create_tables(). Yields the db path. Cleaned up by tmp_path fixture.
    """
    db_path = str(tmp_path / "test_zentrade.db")
    monkeypatch.setattr(db_module, "DB_PATH", db_path)
    db_module.create_tables()
    yield db_path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage, clock):
    """Empty store backed by MemoryStorage and a FakeClock."""
    return PortfolioStore(storage=storage, clock=clock)


@pytest.fixture
def populated_store(store):
    """TEST_HOLDINGS + TEST_CASH loaded through the public mutation API."""
    for h in TEST_HOLDINGS:
        store.add_position(h)
    store.set_cash(TEST_CASH)
    return store
