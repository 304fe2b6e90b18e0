from .database import (
    AccountStore,
    BalanceHistoryStore,
    ConnectionStore,
    Stores,
    SyncLogStore,
    TransactionStore,
    get_db,
)

__all__ = [
    "AccountStore",
    "BalanceHistoryStore",
    "ConnectionStore",
    "Stores",
    "SyncLogStore",
    "TransactionStore",
    "get_db",
]
