from .type_mapper import map_account_type
from .sync_ledger import SyncLedger
from .reconciliation import ReconciliationEngine
from .dispatcher import SyncDispatcher
from .lifecycle import CallbackCode, CallbackOutcome, ConnectionLifecycleHandler
from .linking import BankLinkService
from .summary import summarize_accounts

__all__ = [
    "map_account_type",
    "SyncLedger",
    "ReconciliationEngine",
    "SyncDispatcher",
    "CallbackCode",
    "CallbackOutcome",
    "ConnectionLifecycleHandler",
    "BankLinkService",
    "summarize_accounts",
]
