from .records import (
    Account,
    AccountType,
    AccountUpsert,
    BalanceSnapshot,
    BankConnection,
    ConnectionStatus,
    SyncLogEntry,
    SyncResult,
    SyncStatus,
    Transaction,
)
from .aggregator import (
    AggregatorAccount,
    AggregatorBank,
    AggregatorCategory,
    AggregatorConnection,
    AggregatorTransaction,
    AggregatorUser,
)
from .summary import (
    AccountSummary,
    AccountsResponse,
    BalanceHistoryResponse,
    BankLinkResponse,
    ConnectionsResponse,
    SyncLogsResponse,
    SyncRequest,
    SyncResponse,
    TransactionsResponse,
)

__all__ = [
    "Account",
    "AccountType",
    "AccountUpsert",
    "BalanceSnapshot",
    "BankConnection",
    "ConnectionStatus",
    "SyncLogEntry",
    "SyncResult",
    "SyncStatus",
    "Transaction",
    "AggregatorAccount",
    "AggregatorBank",
    "AggregatorCategory",
    "AggregatorConnection",
    "AggregatorTransaction",
    "AggregatorUser",
    "AccountSummary",
    "AccountsResponse",
    "BalanceHistoryResponse",
    "BankLinkResponse",
    "ConnectionsResponse",
    "SyncLogsResponse",
    "SyncRequest",
    "SyncResponse",
    "TransactionsResponse",
]
