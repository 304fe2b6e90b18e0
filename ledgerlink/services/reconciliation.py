"""Reconciliation of aggregator accounts and transactions into local storage."""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from pydantic import ValidationError
from ledgerlink.adapters.base import AggregatorGateway
from ledgerlink.errors import NotFoundError, PersistenceError, UpstreamError
from ledgerlink.models.aggregator import AggregatorAccount, AggregatorTransaction
from ledgerlink.models.records import (
    Account,
    AccountUpsert,
    BalanceSnapshot,
    BankConnection,
    ConnectionStatus,
    SyncLogEntry,
    SyncResult,
    SyncStatus,
    Transaction,
)
from ledgerlink.services.sync_ledger import SyncLedger
from ledgerlink.services.type_mapper import map_account_type
from ledgerlink.storage.database import Stores
from ledgerlink.utils.locking import KeyedLock
from ledgerlink.utils.timestamp import utc_now

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """
    Synchronizes one bank connection with the aggregator.

    A run fetches the remote accounts, upserts them by external id, records
    today's balance snapshot, and inserts the trailing window of transactions
    (insert-if-absent by external id). Running it again on unchanged remote
    data creates no duplicates; balances always take the latest remote value.

    Failures of a single account are logged and skipped. Failures of the run
    itself mark the connection as errored, are written to the sync ledger, and
    are re-raised. At most one run per connection is in flight at a time.
    """

    def __init__(
        self,
        gateway: AggregatorGateway,
        stores: Stores,
        ledger: Optional[SyncLedger] = None,
        *,
        window_days: int = 90,
        transaction_limit: int = 500,
        clock: Callable[[], datetime] = utc_now,
        locks: Optional[KeyedLock] = None,
    ):
        self.gateway = gateway
        self.stores = stores
        self.ledger = ledger or SyncLedger(stores.sync_logs)
        self.window_days = window_days
        self.transaction_limit = transaction_limit
        self.clock = clock
        self.locks = locks or KeyedLock()

    def sync_connection(self, external_connection_id: str) -> SyncResult:
        """
        Synchronize the connection with the given aggregator-side id.

        Args:
            external_connection_id: Aggregator identifier of the connection

        Returns:
            SyncResult with account and transaction counts

        Raises:
            NotFoundError: If no connection has this id
            UpstreamError: If the account listing fails
            PersistenceError: If the connection or ledger update fails
        """
        with self.locks.hold(external_connection_id):
            connection = self.stores.connections.get_by_external_id(external_connection_id)
            if connection is None:
                raise NotFoundError(f"Connection {external_connection_id} not found")
            return self._run(connection)

    def _run(self, connection: BankConnection) -> SyncResult:
        log = SyncLogEntry(
            user_id=connection.user_id,
            connection_id=connection.id,
            started_at=self.clock(),
        )
        logger.info("Sync started", extra={"connection_id": connection.id})

        try:
            records = self.gateway.list_accounts(
                connection.external_connection_id,
                auth_token=connection.auth_token,
            )
            self._enrich_connection(connection, records)

            today = self.clock().date()
            min_date = today - timedelta(days=self.window_days)
            for record in records:
                self._sync_account(connection, record, log, today, min_date)

            finished_at = self.clock()
            self.stores.connections.update(
                connection.id,
                last_sync_at=finished_at,
                status=ConnectionStatus.ACTIVE,
                error_message=None,
            )
            log.completed_at = finished_at
            self.ledger.record(log)
        except Exception as e:
            self._record_failure(connection, log, e)
            raise

        logger.info(
            "Sync completed",
            extra={
                "connection_id": connection.id,
                "accounts_synced": log.accounts_synced,
                "transactions_synced": log.transactions_synced,
                "accounts_failed": log.accounts_failed,
            },
        )
        return SyncResult(
            accounts_synced=log.accounts_synced,
            transactions_synced=log.transactions_synced,
            accounts_failed=log.accounts_failed,
        )

    def _enrich_connection(self, connection: BankConnection, records: List[Dict[str, Any]]) -> None:
        """Fill in a missing bank name/logo from the first account's bank."""
        if not records:
            return
        try:
            bank = AggregatorAccount.model_validate(records[0]).bank
        except ValidationError:
            return
        if bank is None:
            return
        fields = {}
        if not connection.bank_name and bank.name:
            fields["bank_name"] = bank.name
        if not connection.bank_logo_url and bank.logo_url:
            fields["bank_logo_url"] = bank.logo_url
        if not fields:
            return
        try:
            self.stores.connections.update(connection.id, **fields)
        except PersistenceError as e:
            logger.warning("Could not store bank details for connection %s: %s", connection.id, e)

    def _sync_account(
        self,
        connection: BankConnection,
        record: Dict[str, Any],
        log: SyncLogEntry,
        today: date,
        min_date: date,
    ) -> None:
        try:
            remote = AggregatorAccount.model_validate(record)
        except ValidationError as e:
            log.accounts_failed += 1
            logger.error(
                "Malformed account record %s: %d error(s)",
                record.get("id") if isinstance(record, dict) else None,
                e.error_count(),
                extra={"connection_id": connection.id},
            )
            return

        try:
            account = self.stores.accounts.upsert(
                AccountUpsert(
                    user_id=connection.user_id,
                    connection_id=connection.id,
                    external_account_id=remote.id,
                    name=remote.name,
                    type=map_account_type(remote.type),
                    balance=remote.balance,
                    currency=remote.currency,
                    institution_name=remote.bank.name if remote.bank else None,
                    is_manual=False,
                    is_included_in_networth=True,
                )
            )
        except PersistenceError as e:
            log.accounts_failed += 1
            logger.error("Error upserting account %s: %s", remote.id, e, extra={"connection_id": connection.id})
            return

        log.accounts_synced += 1

        try:
            self.stores.balances.insert_if_absent(
                BalanceSnapshot(
                    account_id=account.id,
                    balance=remote.balance,
                    currency=remote.currency,
                    recorded_at=today,
                )
            )
        except PersistenceError as e:
            logger.warning("Error recording balance for account %s: %s", account.id, e)

        try:
            remote_transactions = self.gateway.list_transactions(
                connection.external_connection_id,
                remote.id,
                min_date=min_date,
                limit=self.transaction_limit,
                auth_token=connection.auth_token,
            )
        except UpstreamError as e:
            logger.error("Error fetching transactions for account %s: %s", remote.id, e)
            return

        try:
            self.stores.transactions.insert_many_if_absent(
                self._to_transaction(account, tx) for tx in remote_transactions
            )
        except PersistenceError as e:
            logger.error("Error inserting transactions for account %s: %s", account.id, e)
            return

        # Counts what was fetched; rows already stored are absorbed by insert-if-absent
        log.transactions_synced += len(remote_transactions)

    @staticmethod
    def _to_transaction(account: Account, tx: AggregatorTransaction) -> Transaction:
        return Transaction(
            account_id=account.id,
            external_transaction_id=tx.id,
            date=tx.date,
            description=tx.resolved_description,
            amount=tx.amount,
            currency=tx.currency or account.currency,
            category=tx.category.name if tx.category and tx.category.name else None,
            is_pending=tx.is_pending,
            is_manual=False,
        )

    def _record_failure(self, connection: BankConnection, log: SyncLogEntry, error: Exception) -> None:
        message = str(error) or type(error).__name__
        logger.error("Sync failed for connection %s: %s", connection.id, message)

        try:
            self.stores.connections.update(
                connection.id,
                status=ConnectionStatus.ERROR,
                error_message=message,
            )
        except PersistenceError:
            logger.exception("Could not mark connection %s as failed", connection.id)

        log.status = SyncStatus.ERROR
        log.error_message = message
        log.completed_at = self.clock()
        try:
            self.ledger.record(log)
        except PersistenceError:
            logger.exception("Could not write failed sync log for connection %s", connection.id)
