"""Database storage layer using SQLite."""
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional
from ledgerlink.config import settings
from ledgerlink.errors import PersistenceError
from ledgerlink.models.records import (
    Account,
    AccountUpsert,
    BalanceSnapshot,
    BankConnection,
    ConnectionStatus,
    SyncLogEntry,
    Transaction,
)
from ledgerlink.utils.timestamp import parse_timestamp, utc_now


def _new_id() -> str:
    return str(uuid.uuid4())


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None


class SQLiteStore:
    """Base store: one short-lived connection per operation."""

    SCHEMA = ""

    def __init__(self, db_path: str = "ledgerlink.db"):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize database tables."""
        with self._get_conn() as conn:
            conn.executescript(self.SCHEMA)
            conn.commit()

    @contextmanager
    def _get_conn(self):
        """Get database connection; driver errors surface as PersistenceError."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=10.0)
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"{type(self).__name__}: {e}") from e
        finally:
            conn.close()


class ConnectionStore(SQLiteStore):
    """Storage for bank connections."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS bank_connections (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            external_connection_id TEXT NOT NULL UNIQUE,
            bank_name TEXT,
            bank_logo_url TEXT,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'active', 'error')),
            error_message TEXT,
            last_sync_at TEXT,
            auth_token TEXT,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_connections_user ON bank_connections(user_id);
    """

    UPDATABLE = frozenset(
        ("bank_name", "bank_logo_url", "status", "error_message", "last_sync_at", "auth_token")
    )

    def create(
        self,
        user_id: str,
        external_connection_id: str,
        auth_token: Optional[str] = None,
        bank_name: Optional[str] = None,
    ) -> BankConnection:
        """Create a connection in the pending state."""
        connection = BankConnection(
            id=_new_id(),
            user_id=user_id,
            external_connection_id=external_connection_id,
            bank_name=bank_name,
            status=ConnectionStatus.PENDING,
            auth_token=auth_token,
            created_at=utc_now(),
        )
        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO bank_connections
                (id, user_id, external_connection_id, bank_name, status, auth_token, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                connection.id,
                connection.user_id,
                connection.external_connection_id,
                connection.bank_name,
                connection.status.value,
                connection.auth_token,
                _ts(connection.created_at),
            ))
            conn.commit()
        return connection

    def get(self, connection_id: str) -> Optional[BankConnection]:
        return self._fetch_one("SELECT * FROM bank_connections WHERE id = ?", (connection_id,))

    def get_by_external_id(self, external_connection_id: str) -> Optional[BankConnection]:
        return self._fetch_one(
            "SELECT * FROM bank_connections WHERE external_connection_id = ?",
            (external_connection_id,),
        )

    def get_for_user(self, connection_id: str, user_id: str) -> Optional[BankConnection]:
        """Get a connection only if it belongs to the given user."""
        return self._fetch_one(
            "SELECT * FROM bank_connections WHERE id = ? AND user_id = ?",
            (connection_id, user_id),
        )

    def list_for_user(self, user_id: str) -> List[BankConnection]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM bank_connections WHERE user_id = ? ORDER BY created_at ASC",
                (user_id,),
            ).fetchall()
            return [self._to_model(row) for row in rows]

    def update(self, connection_id: str, **fields) -> int:
        """Update columns of one connection by internal id. Returns rows changed."""
        return self._update("id", connection_id, fields)

    def update_by_external_id(self, external_connection_id: str, **fields) -> int:
        """Update columns of one connection by aggregator id. Returns rows changed."""
        return self._update("external_connection_id", external_connection_id, fields)

    def _update(self, key_column: str, key: str, fields: dict) -> int:
        unknown = set(fields) - self.UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update connection columns: {sorted(unknown)}")
        if not fields:
            return 0
        values = []
        for name, value in fields.items():
            if isinstance(value, ConnectionStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = _ts(value)
            values.append(value)
        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._get_conn() as conn:
            cursor = conn.execute(
                f"UPDATE bank_connections SET {assignments} WHERE {key_column} = ?",
                (*values, key),
            )
            conn.commit()
            return cursor.rowcount

    def _fetch_one(self, query: str, params: tuple) -> Optional[BankConnection]:
        with self._get_conn() as conn:
            row = conn.execute(query, params).fetchone()
            return self._to_model(row) if row else None

    @staticmethod
    def _to_model(row: sqlite3.Row) -> BankConnection:
        return BankConnection(
            id=row["id"],
            user_id=row["user_id"],
            external_connection_id=row["external_connection_id"],
            bank_name=row["bank_name"],
            bank_logo_url=row["bank_logo_url"],
            status=ConnectionStatus(row["status"]),
            error_message=row["error_message"],
            last_sync_at=_parse_ts(row["last_sync_at"]),
            auth_token=row["auth_token"],
            created_at=_parse_ts(row["created_at"]),
        )


class AccountStore(SQLiteStore):
    """Storage for accounts."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            connection_id TEXT REFERENCES bank_connections(id),
            external_account_id TEXT UNIQUE,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            balance TEXT NOT NULL,
            currency TEXT NOT NULL,
            institution_name TEXT,
            is_manual INTEGER NOT NULL DEFAULT 0,
            is_included_in_networth INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);
    """

    def upsert(self, values: AccountUpsert) -> Account:
        """
        Insert an account, or overwrite it when the external id already exists.

        The balance always takes the new value. The net-worth flag is only set
        on insert so a user's choice survives later syncs.
        """
        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO accounts
                (id, user_id, connection_id, external_account_id, name, type, balance,
                 currency, institution_name, is_manual, is_included_in_networth, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_account_id) DO UPDATE SET
                    user_id = excluded.user_id,
                    connection_id = excluded.connection_id,
                    name = excluded.name,
                    type = excluded.type,
                    balance = excluded.balance,
                    currency = excluded.currency,
                    institution_name = excluded.institution_name,
                    is_manual = excluded.is_manual,
                    updated_at = excluded.updated_at
            """, (
                _new_id(),
                values.user_id,
                values.connection_id,
                values.external_account_id,
                values.name,
                values.type.value,
                str(values.balance),
                values.currency,
                values.institution_name,
                int(values.is_manual),
                int(values.is_included_in_networth),
                _ts(utc_now()),
            ))
            conn.commit()
            row = conn.execute(
                "SELECT * FROM accounts WHERE external_account_id = ?",
                (values.external_account_id,),
            ).fetchone()
        if row is None:
            raise PersistenceError(f"Account {values.external_account_id} missing after upsert")
        return self._to_model(row)

    def get(self, account_id: str) -> Optional[Account]:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
            return self._to_model(row) if row else None

    def get_by_external_id(self, external_account_id: str) -> Optional[Account]:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE external_account_id = ?",
                (external_account_id,),
            ).fetchone()
            return self._to_model(row) if row else None

    def list_for_user(self, user_id: str) -> List[Account]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM accounts WHERE user_id = ? ORDER BY name ASC",
                (user_id,),
            ).fetchall()
            return [self._to_model(row) for row in rows]

    def get_for_user(self, account_id: str, user_id: str) -> Optional[Account]:
        """Get an account only if it belongs to the given user."""
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE id = ? AND user_id = ?",
                (account_id, user_id),
            ).fetchone()
            return self._to_model(row) if row else None

    @staticmethod
    def _to_model(row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            user_id=row["user_id"],
            connection_id=row["connection_id"],
            external_account_id=row["external_account_id"],
            name=row["name"],
            type=row["type"],
            balance=Decimal(row["balance"]),
            currency=row["currency"],
            institution_name=row["institution_name"],
            is_manual=bool(row["is_manual"]),
            is_included_in_networth=bool(row["is_included_in_networth"]),
            updated_at=_parse_ts(row["updated_at"]),
        )


class BalanceHistoryStore(SQLiteStore):
    """Storage for daily balance snapshots."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS balance_history (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL REFERENCES accounts(id),
            balance TEXT NOT NULL,
            currency TEXT NOT NULL,
            recorded_at TEXT NOT NULL,
            UNIQUE (account_id, recorded_at)
        );
    """

    def insert_if_absent(self, snapshot: BalanceSnapshot) -> bool:
        """Record a snapshot unless one exists for that account and day. Returns True if inserted."""
        with self._get_conn() as conn:
            cursor = conn.execute("""
                INSERT INTO balance_history (id, account_id, balance, currency, recorded_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(account_id, recorded_at) DO NOTHING
            """, (
                _new_id(),
                snapshot.account_id,
                str(snapshot.balance),
                snapshot.currency,
                snapshot.recorded_at.isoformat(),
            ))
            conn.commit()
            return cursor.rowcount == 1

    def list_for_account(self, account_id: str) -> List[BalanceSnapshot]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM balance_history WHERE account_id = ? ORDER BY recorded_at ASC",
                (account_id,),
            ).fetchall()
            return [
                BalanceSnapshot(
                    account_id=row["account_id"],
                    balance=Decimal(row["balance"]),
                    currency=row["currency"],
                    recorded_at=date.fromisoformat(row["recorded_at"]),
                )
                for row in rows
            ]


class TransactionStore(SQLiteStore):
    """Storage for transactions."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL REFERENCES accounts(id),
            external_transaction_id TEXT UNIQUE,
            date TEXT NOT NULL,
            description TEXT NOT NULL,
            amount TEXT NOT NULL,
            currency TEXT NOT NULL,
            category TEXT,
            is_pending INTEGER NOT NULL DEFAULT 0,
            is_manual INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_transactions_account_date ON transactions(account_id, date);
    """

    def insert_many_if_absent(self, transactions: Iterable[Transaction]) -> int:
        """
        Insert a batch of transactions in one database transaction.

        Rows whose external id is already stored are skipped. Either the whole
        batch is applied or, on error, none of it.

        Returns:
            Number of rows actually inserted
        """
        created_at = _ts(utc_now())
        rows = [
            (
                _new_id(),
                tx.account_id,
                tx.external_transaction_id,
                tx.date.isoformat(),
                tx.description,
                str(tx.amount),
                tx.currency,
                tx.category,
                int(tx.is_pending),
                int(tx.is_manual),
                created_at,
            )
            for tx in transactions
        ]
        if not rows:
            return 0
        with self._get_conn() as conn:
            before = conn.total_changes
            conn.executemany("""
                INSERT INTO transactions
                (id, account_id, external_transaction_id, date, description, amount,
                 currency, category, is_pending, is_manual, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_transaction_id) DO NOTHING
            """, rows)
            conn.commit()
            return conn.total_changes - before

    def list_for_account(self, account_id: str, limit: int = 100, offset: int = 0) -> List[Transaction]:
        """Newest transactions first."""
        with self._get_conn() as conn:
            rows = conn.execute("""
                SELECT * FROM transactions
                WHERE account_id = ?
                ORDER BY date DESC, created_at DESC
                LIMIT ? OFFSET ?
            """, (account_id, limit, offset)).fetchall()
            return [
                Transaction(
                    account_id=row["account_id"],
                    external_transaction_id=row["external_transaction_id"],
                    date=date.fromisoformat(row["date"]),
                    description=row["description"],
                    amount=Decimal(row["amount"]),
                    currency=row["currency"],
                    category=row["category"],
                    is_pending=bool(row["is_pending"]),
                    is_manual=bool(row["is_manual"]),
                )
                for row in rows
            ]

    def count_for_user_since(self, user_id: str, since: date) -> int:
        """Number of transactions on the user's accounts dated on or after ``since``."""
        with self._get_conn() as conn:
            row = conn.execute("""
                SELECT COUNT(*) FROM transactions t
                JOIN accounts a ON a.id = t.account_id
                WHERE a.user_id = ? AND t.date >= ?
            """, (user_id, since.isoformat())).fetchone()
            return row[0]


class SyncLogStore(SQLiteStore):
    """Append-only storage for sync logs."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS sync_logs (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            connection_id TEXT NOT NULL REFERENCES bank_connections(id),
            started_at TEXT NOT NULL,
            completed_at TEXT,
            status TEXT NOT NULL CHECK (status IN ('success', 'error')),
            accounts_synced INTEGER NOT NULL DEFAULT 0,
            transactions_synced INTEGER NOT NULL DEFAULT 0,
            accounts_failed INTEGER NOT NULL DEFAULT 0,
            error_message TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_sync_logs_connection ON sync_logs(connection_id, started_at);
    """

    def insert(self, entry: SyncLogEntry) -> str:
        """Append a log entry."""
        log_id = _new_id()
        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO sync_logs
                (id, user_id, connection_id, started_at, completed_at, status,
                 accounts_synced, transactions_synced, accounts_failed, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                log_id,
                entry.user_id,
                entry.connection_id,
                _ts(entry.started_at),
                _ts(entry.completed_at),
                entry.status.value,
                entry.accounts_synced,
                entry.transactions_synced,
                entry.accounts_failed,
                entry.error_message,
            ))
            conn.commit()
        return log_id

    def list_for_connection(self, connection_id: str, limit: int = 20) -> List[SyncLogEntry]:
        """Latest entries first."""
        with self._get_conn() as conn:
            rows = conn.execute("""
                SELECT * FROM sync_logs
                WHERE connection_id = ?
                ORDER BY started_at DESC
                LIMIT ?
            """, (connection_id, limit)).fetchall()
            return [
                SyncLogEntry(
                    user_id=row["user_id"],
                    connection_id=row["connection_id"],
                    started_at=parse_timestamp(row["started_at"]),
                    completed_at=_parse_ts(row["completed_at"]),
                    status=row["status"],
                    accounts_synced=row["accounts_synced"],
                    transactions_synced=row["transactions_synced"],
                    accounts_failed=row["accounts_failed"],
                    error_message=row["error_message"],
                )
                for row in rows
            ]


class Stores:
    """The per-table stores sharing one database file."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connections = ConnectionStore(db_path)
        self.accounts = AccountStore(db_path)
        self.balances = BalanceHistoryStore(db_path)
        self.transactions = TransactionStore(db_path)
        self.sync_logs = SyncLogStore(db_path)


# Global instance
_stores = None


def get_db() -> Stores:
    """Get database store instances."""
    global _stores
    if _stores is None:
        _stores = Stores(settings.database_path)
    return _stores
