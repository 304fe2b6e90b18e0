"""Handling of the aggregator's connection callback."""
import logging
from enum import Enum
from typing import Optional
from pydantic import BaseModel
from ledgerlink.errors import DispatchError, PersistenceError
from ledgerlink.models.records import ConnectionStatus
from ledgerlink.services.dispatcher import SyncDispatcher
from ledgerlink.storage.database import ConnectionStore

logger = logging.getLogger(__name__)

CONNECTION_FAILED_MESSAGE = "connection failed"
INITIAL_SYNC_FAILED_MESSAGE = "initial synchronization failed"


class CallbackCode(str, Enum):
    BANK_CONNECTED = "bank_connected"
    INVALID_CALLBACK = "invalid_callback"
    CONNECTION_FAILED = "connection_failed"
    SYNC_FAILED = "sync_failed"


class CallbackOutcome(BaseModel):
    """What to tell the user after a callback."""

    code: CallbackCode
    is_error: bool

    @property
    def query_param(self) -> str:
        return "error" if self.is_error else "success"


class ConnectionLifecycleHandler:
    """Moves a connection to active or error on callback and starts its first sync."""

    def __init__(self, connections: ConnectionStore, dispatcher: SyncDispatcher):
        self.connections = connections
        self.dispatcher = dispatcher

    def handle_callback(self, connection_id: Optional[str], state: Optional[str] = None) -> CallbackOutcome:
        """
        Process one callback.

        Args:
            connection_id: Aggregator-side connection id from the callback
            state: "error" when the user's bank login failed

        Returns:
            CallbackOutcome to encode into the redirect
        """
        if not connection_id or not connection_id.strip():
            logger.warning("Callback without connection id")
            return CallbackOutcome(code=CallbackCode.INVALID_CALLBACK, is_error=True)

        if state == "error":
            self.connections.update_by_external_id(
                connection_id,
                status=ConnectionStatus.ERROR,
                error_message=CONNECTION_FAILED_MESSAGE,
            )
            logger.info("Bank connection failed", extra={"external_connection_id": connection_id})
            return CallbackOutcome(code=CallbackCode.CONNECTION_FAILED, is_error=True)

        if self.connections.get_by_external_id(connection_id) is None:
            logger.error("Callback for unknown connection", extra={"external_connection_id": connection_id})
            return CallbackOutcome(code=CallbackCode.SYNC_FAILED, is_error=True)

        self.connections.update_by_external_id(connection_id, status=ConnectionStatus.ACTIVE)
        try:
            self.dispatcher.dispatch(connection_id)
        except DispatchError as e:
            logger.error("Callback error: %s", e, extra={"external_connection_id": connection_id})
            try:
                self.connections.update_by_external_id(
                    connection_id,
                    status=ConnectionStatus.ERROR,
                    error_message=INITIAL_SYNC_FAILED_MESSAGE,
                )
            except PersistenceError:
                logger.exception("Could not mark connection %s as failed", connection_id)
            return CallbackOutcome(code=CallbackCode.SYNC_FAILED, is_error=True)

        return CallbackOutcome(code=CallbackCode.BANK_CONNECTED, is_error=False)
