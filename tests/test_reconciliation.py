"""Tests for the reconciliation engine."""
import sqlite3
import threading
import time
from datetime import date, timedelta
from decimal import Decimal
import httpx
import pytest
from conftest import EXTERNAL_ID, make_account, make_transaction
from ledgerlink.adapters.mock import MockAggregatorGateway
from ledgerlink.adapters.powens import PowensGateway
from ledgerlink.errors import NotFoundError, PersistenceError, UpstreamError
from ledgerlink.models.records import AccountType, ConnectionStatus, SyncStatus
from ledgerlink.services.reconciliation import ReconciliationEngine
from ledgerlink.storage.database import AccountStore, TransactionStore


class FailingAccountStore(AccountStore):
    """Account store that refuses some external ids."""

    def __init__(self, db_path, fail_on):
        super().__init__(db_path)
        self.fail_on = set(fail_on)

    def upsert(self, values):
        if values.external_account_id in self.fail_on:
            raise PersistenceError(f"cannot write {values.external_account_id}")
        return super().upsert(values)


class FailingTransactionStore(TransactionStore):
    """Transaction store whose bulk insert always fails."""

    def insert_many_if_absent(self, transactions):
        raise PersistenceError("disk full")


@pytest.fixture
def remote_data(gateway):
    """Two accounts, two transactions on the first one."""
    gateway.accounts[EXTERNAL_ID] = [
        make_account("acc-1", balance="1500.25", type="checking"),
        make_account("acc-2", balance="-320.00", type="CARD"),
    ]
    gateway.transactions[(EXTERNAL_ID, "acc-1")] = [
        make_transaction("tx-1"),
        make_transaction("tx-2", amount="2000.00", description="Salary"),
    ]
    return gateway


def test_sync_creates_accounts_balances_and_transactions(engine, stores, connection, remote_data, clock):
    """Test a first sync writes every record and reports counts."""
    result = engine.sync_connection(EXTERNAL_ID)

    assert result.accounts_synced == 2
    assert result.transactions_synced == 2
    assert result.accounts_failed == 0

    checking = stores.accounts.get_by_external_id("acc-1")
    card = stores.accounts.get_by_external_id("acc-2")
    assert checking.balance == Decimal("1500.25")
    assert checking.type == AccountType.CHECKING
    assert checking.connection_id == connection.id
    assert checking.user_id == "user-1"
    assert checking.institution_name == "Test Bank"
    assert checking.is_manual is False
    assert checking.is_included_in_networth is True
    assert card.type == AccountType.CREDIT_CARD
    assert card.balance == Decimal("-320.00")

    snapshots = stores.balances.list_for_account(checking.id)
    assert len(snapshots) == 1
    assert snapshots[0].recorded_at == date(2024, 3, 1)
    assert snapshots[0].balance == Decimal("1500.25")

    transactions = stores.transactions.list_for_account(checking.id)
    assert {t.external_transaction_id for t in transactions} == {"tx-1", "tx-2"}

    updated = stores.connections.get(connection.id)
    assert updated.status == ConnectionStatus.ACTIVE
    assert updated.error_message is None
    assert updated.last_sync_at == clock.now
    assert updated.bank_name == "Test Bank"
    assert updated.bank_logo_url == "https://bank.test/logo.png"

    logs = stores.sync_logs.list_for_connection(connection.id)
    assert len(logs) == 1
    assert logs[0].status == SyncStatus.SUCCESS
    assert logs[0].accounts_synced == 2
    assert logs[0].transactions_synced == 2
    assert logs[0].completed_at == clock.now


def test_sync_is_idempotent(engine, stores, connection, remote_data):
    """Test running the same sync twice creates no duplicates."""
    engine.sync_connection(EXTERNAL_ID)
    second = engine.sync_connection(EXTERNAL_ID)

    accounts = stores.accounts.list_for_user("user-1")
    assert len(accounts) == 2

    checking = stores.accounts.get_by_external_id("acc-1")
    assert checking.balance == Decimal("1500.25")
    assert len(stores.balances.list_for_account(checking.id)) == 1
    assert len(stores.transactions.list_for_account(checking.id)) == 2

    # Fetched transactions are counted even when they were already stored
    assert second.transactions_synced == 2
    assert len(stores.sync_logs.list_for_connection(connection.id)) == 2


def test_balance_overwritten_but_daily_snapshot_kept(engine, stores, connection, gateway):
    """Test the account balance follows the remote value while today's snapshot keeps the first one."""
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1", balance="100.00")]
    engine.sync_connection(EXTERNAL_ID)

    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1", balance="75.50")]
    engine.sync_connection(EXTERNAL_ID)

    account = stores.accounts.get_by_external_id("acc-1")
    assert account.balance == Decimal("75.50")

    snapshots = stores.balances.list_for_account(account.id)
    assert len(snapshots) == 1
    assert snapshots[0].balance == Decimal("100.00")


def test_new_day_adds_snapshot(engine, stores, connection, gateway, clock):
    """Test a sync on the next day records a second snapshot."""
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1", balance="100.00")]
    engine.sync_connection(EXTERNAL_ID)

    clock.advance(days=1)
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1", balance="90.00")]
    engine.sync_connection(EXTERNAL_ID)

    account = stores.accounts.get_by_external_id("acc-1")
    snapshots = stores.balances.list_for_account(account.id)
    assert [s.recorded_at for s in snapshots] == [date(2024, 3, 1), date(2024, 3, 2)]
    assert [s.balance for s in snapshots] == [Decimal("100.00"), Decimal("90.00")]


def test_failed_account_upsert_is_skipped(engine, stores, connection, gateway):
    """Test one failing account does not abort the sync."""
    stores.accounts = FailingAccountStore(stores.db_path, fail_on={"acc-2"})
    gateway.accounts[EXTERNAL_ID] = [
        make_account("acc-1"),
        make_account("acc-2"),
        make_account("acc-3"),
    ]
    gateway.transactions[(EXTERNAL_ID, "acc-2")] = [make_transaction("tx-never")]
    gateway.transactions[(EXTERNAL_ID, "acc-3")] = [make_transaction("tx-3")]

    result = engine.sync_connection(EXTERNAL_ID)

    assert result.accounts_synced == 2
    assert result.accounts_failed == 1
    assert result.transactions_synced == 1
    assert stores.accounts.get_by_external_id("acc-1") is not None
    assert stores.accounts.get_by_external_id("acc-2") is None
    assert stores.accounts.get_by_external_id("acc-3") is not None

    log = stores.sync_logs.list_for_connection(connection.id)[0]
    assert log.status == SyncStatus.SUCCESS
    assert log.accounts_failed == 1
    assert stores.connections.get(connection.id).status == ConnectionStatus.ACTIVE


def test_malformed_account_is_skipped(stores, connection, clock):
    """Test an account the aggregator sends malformed is counted as failed and the others sync."""
    accounts = [
        make_account("acc-1"),
        make_account("acc-2", balance="N/A"),
        make_account("acc-3"),
    ]

    def handler(request):
        if request.url.path.endswith("/accounts"):
            return httpx.Response(200, json={"accounts": accounts})
        return httpx.Response(200, json={"transactions": [make_transaction(f"tx-{request.url.path.split('/')[-2]}")]})

    gateway = PowensGateway("https://bank.api.test/2.0", "client-1", "secret-1", transport=httpx.MockTransport(handler))
    engine = ReconciliationEngine(gateway, stores, clock=clock)

    result = engine.sync_connection(EXTERNAL_ID)

    assert result.accounts_synced == 2
    assert result.accounts_failed == 1
    assert result.transactions_synced == 2
    assert stores.accounts.get_by_external_id("acc-1") is not None
    assert stores.accounts.get_by_external_id("acc-2") is None
    assert stores.accounts.get_by_external_id("acc-3") is not None

    updated = stores.connections.get(connection.id)
    assert updated.status == ConnectionStatus.ACTIVE
    [log] = stores.sync_logs.list_for_connection(connection.id)
    assert log.status == SyncStatus.SUCCESS
    assert log.accounts_failed == 1


def test_malformed_first_account_skips_enrichment(engine, stores, connection, gateway):
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1", balance="N/A"), make_account("acc-2")]

    result = engine.sync_connection(EXTERNAL_ID)

    assert result.accounts_synced == 1
    assert stores.connections.get(connection.id).bank_name is None


def test_lock_released_after_failed_sync(engine, stores, connection, gateway):
    """Test a failing sync frees the connection for the next one."""
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1")]
    gateway.fail("list_accounts")

    with pytest.raises(UpstreamError):
        engine.sync_connection(EXTERNAL_ID)
    assert not engine.locks.is_held(EXTERNAL_ID)

    gateway.clear_failures()
    result = engine.sync_connection(EXTERNAL_ID)

    assert result.accounts_synced == 1
    assert stores.connections.get(connection.id).status == ConnectionStatus.ACTIVE
    assert not engine.locks.is_held(EXTERNAL_ID)


def test_lock_released_after_unknown_connection(engine):
    with pytest.raises(NotFoundError):
        engine.sync_connection("does-not-exist")

    assert not engine.locks.is_held("does-not-exist")
    assert engine.locks._locks == {}


def test_transaction_fields_are_mapped(engine, stores, connection, gateway):
    """Test description fallback, pending flag, category and currency fallback."""
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1", currency={"id": "USD", "symbol": "$"})]
    gateway.transactions[(EXTERNAL_ID, "acc-1")] = [
        make_transaction("tx-none", description=None, original_description=None),
        make_transaction("tx-orig", description="", original_description="CB CARREFOUR 12/02"),
        make_transaction("tx-pending", state="pending", category=None, currency=None),
    ]

    engine.sync_connection(EXTERNAL_ID)

    account = stores.accounts.get_by_external_id("acc-1")
    stored = {t.external_transaction_id: t for t in stores.transactions.list_for_account(account.id)}
    assert stored["tx-none"].description == "Transaction"
    assert stored["tx-orig"].description == "CB CARREFOUR 12/02"
    assert stored["tx-orig"].category == "Shopping"
    assert stored["tx-orig"].is_pending is False
    assert stored["tx-pending"].is_pending is True
    assert stored["tx-pending"].category is None
    assert stored["tx-pending"].currency == "USD"
    assert all(t.is_manual is False for t in stored.values())


def test_pending_transaction_is_not_updated_on_resync(engine, stores, connection, gateway):
    """Test a stored transaction keeps its first state (insert-if-absent)."""
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1")]
    gateway.transactions[(EXTERNAL_ID, "acc-1")] = [make_transaction("tx-1", state="pending")]
    engine.sync_connection(EXTERNAL_ID)

    gateway.transactions[(EXTERNAL_ID, "acc-1")] = [make_transaction("tx-1", state="completed")]
    engine.sync_connection(EXTERNAL_ID)

    account = stores.accounts.get_by_external_id("acc-1")
    [stored] = stores.transactions.list_for_account(account.id)
    assert stored.is_pending is True


def test_transactions_requested_for_trailing_window(engine, connection, gateway):
    """Test transactions are fetched for the last 90 days with a 500 row limit."""
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1")]

    engine.sync_connection(EXTERNAL_ID)

    calls = [args for op, args in gateway.calls if op == "list_transactions"]
    assert calls == [(EXTERNAL_ID, "acc-1", date(2024, 3, 1) - timedelta(days=90), None, 500, 0)]


def test_account_listing_failure_marks_connection_error(engine, stores, connection, gateway):
    """Test the failure path updates the connection, logs the attempt and re-raises."""
    gateway.fail("list_accounts")

    with pytest.raises(UpstreamError):
        engine.sync_connection(EXTERNAL_ID)

    updated = stores.connections.get(connection.id)
    assert updated.status == ConnectionStatus.ERROR
    assert updated.error_message == "mock list_accounts failure"
    assert updated.last_sync_at is None

    [log] = stores.sync_logs.list_for_connection(connection.id)
    assert log.status == SyncStatus.ERROR
    assert log.error_message == "mock list_accounts failure"
    assert log.accounts_synced == 0
    assert log.completed_at is not None
    assert stores.accounts.list_for_user("user-1") == []


def test_transaction_fetch_failure_is_isolated(engine, stores, connection, remote_data, gateway):
    """Test a transaction listing error keeps the account but adds no transactions."""
    gateway.fail("list_transactions")

    result = engine.sync_connection(EXTERNAL_ID)

    assert result.accounts_synced == 2
    assert result.transactions_synced == 0
    assert stores.connections.get(connection.id).status == ConnectionStatus.ACTIVE


def test_transaction_insert_failure_is_isolated(engine, stores, connection, remote_data):
    """Test a bulk insert error contributes zero transactions and the sync still succeeds."""
    stores.transactions = FailingTransactionStore(stores.db_path)

    result = engine.sync_connection(EXTERNAL_ID)

    assert result.accounts_synced == 2
    assert result.transactions_synced == 0
    assert stores.sync_logs.list_for_connection(connection.id)[0].status == SyncStatus.SUCCESS


def test_unknown_connection_raises_not_found(engine, stores):
    """Test syncing an unknown external id fails without writing anything."""
    with pytest.raises(NotFoundError):
        engine.sync_connection("does-not-exist")


def test_existing_bank_name_is_not_overwritten(engine, stores, connection, remote_data):
    """Test enrichment only fills a missing bank name."""
    stores.connections.update(connection.id, bank_name="My Bank")

    engine.sync_connection(EXTERNAL_ID)

    updated = stores.connections.get(connection.id)
    assert updated.bank_name == "My Bank"
    assert updated.bank_logo_url == "https://bank.test/logo.png"


def test_networth_flag_survives_resync(engine, stores, connection, remote_data):
    """Test a user's choice to exclude an account from net worth is kept."""
    engine.sync_connection(EXTERNAL_ID)
    with sqlite3.connect(stores.db_path) as conn:
        conn.execute("UPDATE accounts SET is_included_in_networth = 0 WHERE external_account_id = 'acc-1'")

    engine.sync_connection(EXTERNAL_ID)

    assert stores.accounts.get_by_external_id("acc-1").is_included_in_networth is False


def test_empty_account_list_succeeds(engine, stores, connection):
    """Test a connection with no remote accounts syncs to zero counts."""
    result = engine.sync_connection(EXTERNAL_ID)

    assert result.accounts_synced == 0
    assert result.transactions_synced == 0
    assert stores.connections.get(connection.id).status == ConnectionStatus.ACTIVE


class SlowGateway(MockAggregatorGateway):
    """Gateway recording how many account listings overlap."""

    def __init__(self):
        super().__init__()
        self._guard = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def list_accounts(self, external_user_id, auth_token=None):
        with self._guard:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        time.sleep(0.05)
        with self._guard:
            self.in_flight -= 1
        return super().list_accounts(external_user_id, auth_token)


def test_concurrent_syncs_of_one_connection_are_serialized(stores, connection, clock):
    """Test two simultaneous syncs of the same connection never overlap."""
    gateway = SlowGateway()
    gateway.accounts[EXTERNAL_ID] = [make_account("acc-1")]
    engine = ReconciliationEngine(gateway, stores, clock=clock)
    results = []

    threads = [
        threading.Thread(target=lambda: results.append(engine.sync_connection(EXTERNAL_ID)))
        for _ in range(2)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert gateway.max_in_flight == 1
    assert len(results) == 2
    assert len(stores.accounts.list_for_user("user-1")) == 1
    assert len(stores.sync_logs.list_for_connection(connection.id)) == 2
    assert not engine.locks.is_held(EXTERNAL_ID)
