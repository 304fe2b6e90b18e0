"""Supervised background execution of connection synchronizations."""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from ledgerlink.errors import DispatchError
from ledgerlink.models.records import SyncResult
from ledgerlink.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class SyncDispatcher:
    """
    Runs syncs on a thread pool without making the caller wait.

    Failures inside a sync are logged by the pool's done-callback and never
    reach the code that dispatched it; the connection's stored status and the
    sync ledger are where they become visible.
    """

    def __init__(self, engine: ReconciliationEngine, max_workers: int = 4):
        self.engine = engine
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sync")

    def dispatch(self, external_connection_id: str) -> "Future[SyncResult]":
        """
        Start a background sync.

        Raises:
            DispatchError: If the sync could not be started
        """
        try:
            future = self._executor.submit(self.engine.sync_connection, external_connection_id)
        except RuntimeError as e:
            raise DispatchError(f"Could not start sync for {external_connection_id}: {e}") from e
        future.add_done_callback(lambda f: self._on_done(external_connection_id, f))
        logger.info("Background sync dispatched", extra={"external_connection_id": external_connection_id})
        return future

    @staticmethod
    def _on_done(external_connection_id: str, future: "Future[SyncResult]") -> None:
        if future.cancelled():
            logger.warning("Background sync cancelled", extra={"external_connection_id": external_connection_id})
            return
        error = future.exception()
        if error is not None:
            logger.error(
                "Background sync error: %s",
                error,
                exc_info=(type(error), error, error.__traceback__),
                extra={"external_connection_id": external_connection_id},
            )
            return
        result = future.result()
        logger.info(
            "Background sync finished",
            extra={
                "external_connection_id": external_connection_id,
                "accounts_synced": result.accounts_synced,
                "transactions_synced": result.transactions_synced,
            },
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
