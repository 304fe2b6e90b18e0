"""Append-only ledger of synchronization attempts."""
import logging
from typing import List
from ledgerlink.models.records import SyncLogEntry
from ledgerlink.storage.database import SyncLogStore

logger = logging.getLogger(__name__)


class SyncLedger:
    """Writes one immutable SyncLogEntry per synchronization attempt."""

    def __init__(self, store: SyncLogStore):
        self._store = store

    def record(self, entry: SyncLogEntry) -> str:
        """Append a completed entry. Raises PersistenceError if the write fails."""
        log_id = self._store.insert(entry)
        logger.info(
            "Sync logged",
            extra={
                "sync_log_id": log_id,
                "connection_id": entry.connection_id,
                "status": entry.status.value,
                "accounts_synced": entry.accounts_synced,
                "transactions_synced": entry.transactions_synced,
                "accounts_failed": entry.accounts_failed,
            },
        )
        return log_id

    def history(self, connection_id: str, limit: int = 20) -> List[SyncLogEntry]:
        """Latest entries for a connection, newest first."""
        return self._store.list_for_connection(connection_id, limit=limit)
