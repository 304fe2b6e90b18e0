"""Request and response models for the HTTP API."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field
from .records import Account, BalanceSnapshot, BankConnection, SyncLogEntry, Transaction


class SyncRequest(BaseModel):
    """Request to synchronize one of the caller's connections."""

    connection_id: str = Field(..., min_length=1, description="Internal connection identifier")


class SyncResponse(BaseModel):
    """Response from a manual synchronization."""

    success: bool = True
    accounts_synced: int
    transactions_synced: int
    accounts_failed: int = 0
    message: str


class BankLinkResponse(BaseModel):
    """Response from starting a bank link."""

    url: str = Field(..., description="Aggregator webview URL to open")
    external_user_id: str
    connection_id: str


class AccountSummary(BaseModel):
    """Net worth overview over accounts included in net worth."""

    total_accounts: int
    net_worth: Decimal
    total_assets: Decimal
    total_liabilities: Decimal
    transactions_this_month: int = Field(0, description="Transactions dated in the current month")
    last_sync_at: Optional[datetime] = None


class ConnectionsResponse(BaseModel):
    user_id: str
    connections: List[BankConnection]


class AccountsResponse(BaseModel):
    user_id: str
    accounts: List[Account]


class SyncLogsResponse(BaseModel):
    connection_id: str
    logs: List[SyncLogEntry]


class TransactionsResponse(BaseModel):
    account_id: str
    transactions: List[Transaction]


class BalanceHistoryResponse(BaseModel):
    account_id: str
    balances: List[BalanceSnapshot]
