"""Persisted record models (connections, accounts, balances, transactions, sync logs)."""
import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ERROR = "error"


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    LOAN = "loan"
    INVESTMENT = "investment"
    OTHER = "other"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class BankConnection(BaseModel):
    """Link between a user and one aggregator-side user/connection."""

    id: str
    user_id: str
    external_connection_id: str = Field(..., description="Aggregator-side identifier (unique)")
    bank_name: Optional[str] = None
    bank_logo_url: Optional[str] = None
    status: ConnectionStatus = ConnectionStatus.PENDING
    error_message: Optional[str] = None
    last_sync_at: Optional[datetime.datetime] = None
    auth_token: Optional[str] = Field(None, exclude=True, description="Aggregator user token")
    created_at: Optional[datetime.datetime] = None


class AccountUpsert(BaseModel):
    """Values written by an account upsert keyed on external_account_id."""

    user_id: str
    connection_id: Optional[str] = None
    external_account_id: str
    name: str
    type: AccountType = AccountType.OTHER
    balance: Decimal
    currency: str
    institution_name: Optional[str] = None
    is_manual: bool = False
    is_included_in_networth: bool = True


class Account(AccountUpsert):
    """Financial account visible to a user."""

    id: str
    external_account_id: Optional[str] = None
    updated_at: Optional[datetime.datetime] = None


class BalanceSnapshot(BaseModel):
    """One balance per account per calendar day."""

    account_id: str
    balance: Decimal
    currency: str
    recorded_at: datetime.date


class Transaction(BaseModel):
    """A posted or pending movement on an account."""

    account_id: str
    external_transaction_id: str
    date: datetime.date
    description: str
    amount: Decimal = Field(..., description="Negative for spending, positive for income")
    currency: str
    category: Optional[str] = None
    is_pending: bool = False
    is_manual: bool = False


class SyncLogEntry(BaseModel):
    """Audit record of one reconciliation attempt."""

    user_id: str
    connection_id: str
    started_at: datetime.datetime
    completed_at: Optional[datetime.datetime] = None
    status: SyncStatus = SyncStatus.SUCCESS
    accounts_synced: int = 0
    transactions_synced: int = 0
    accounts_failed: int = 0
    error_message: Optional[str] = None


class SyncResult(BaseModel):
    """Outcome of a successful synchronization."""

    accounts_synced: int
    transactions_synced: int
    accounts_failed: int = 0
