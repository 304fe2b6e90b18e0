"""Shared fixtures: a temporary database, the mock aggregator and a controllable clock."""
from datetime import datetime, timedelta, timezone
import pytest
from ledgerlink.adapters.mock import MockAggregatorGateway
from ledgerlink.services.reconciliation import ReconciliationEngine
from ledgerlink.storage.database import Stores

EXTERNAL_ID = "42"


class FakeClock:
    """Clock returning a fixed instant until moved."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_account(account_id: str, **overrides) -> dict:
    """Raw aggregator account record."""
    record = {
        "id": account_id,
        "name": f"Account {account_id}",
        "balance": "100.00",
        "currency": "EUR",
        "type": "checking",
        "bank": {"id": "9", "name": "Test Bank", "logo_url": "https://bank.test/logo.png"},
    }
    record.update(overrides)
    return record


def make_transaction(tx_id: str, **overrides) -> dict:
    """Raw aggregator transaction record."""
    record = {
        "id": tx_id,
        "date": "2024-02-20",
        "description": f"Payment {tx_id}",
        "amount": "-10.00",
        "currency": "EUR",
        "state": "completed",
        "category": {"id": 1, "name": "Shopping"},
    }
    record.update(overrides)
    return record


@pytest.fixture
def stores(tmp_path):
    """Fresh SQLite database per test."""
    return Stores(str(tmp_path / "ledgerlink_test.db"))


@pytest.fixture
def gateway():
    return MockAggregatorGateway()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(gateway, stores, clock):
    return ReconciliationEngine(gateway, stores, clock=clock)


@pytest.fixture
def connection(stores):
    """A pending connection for user-1 with external id 42."""
    return stores.connections.create(
        user_id="user-1",
        external_connection_id=EXTERNAL_ID,
        auth_token="token-42",
    )
