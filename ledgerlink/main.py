"""FastAPI main application."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urlencode
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import RedirectResponse
from ledgerlink.config import Settings, settings
from ledgerlink.dependencies import (
    get_bank_link_service,
    get_clock,
    get_current_user_id,
    get_engine,
    get_lifecycle_handler,
    get_settings,
    get_stores,
    shutdown_services,
)
from ledgerlink.errors import (
    LedgerLinkError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
)
from ledgerlink.models.summary import (
    AccountsResponse,
    AccountSummary,
    BalanceHistoryResponse,
    BankLinkResponse,
    ConnectionsResponse,
    SyncLogsResponse,
    SyncRequest,
    SyncResponse,
    TransactionsResponse,
)
from ledgerlink.services import (
    BankLinkService,
    ConnectionLifecycleHandler,
    ReconciliationEngine,
    SyncLedger,
    summarize_accounts,
)
from ledgerlink.storage.database import Stores
from ledgerlink.utils.logging_config import configure_logging

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_services()


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)


def _http_error(error: LedgerLinkError, message: str) -> HTTPException:
    """Map an application error to an HTTP error with a structured body."""
    if isinstance(error, NotFoundError):
        status_code = 404
    elif isinstance(error, UpstreamError):
        status_code = 502
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail={"error": message, "details": str(error)})


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "LedgerLink Finance API", "version": "1.0.0"}


@app.post("/connections/connect", response_model=BankLinkResponse)
def connect_bank(
    user_id: str = Depends(get_current_user_id),
    service: BankLinkService = Depends(get_bank_link_service),
):
    """
    Start linking a bank account.

    Creates the aggregator-side user, stores a pending connection and returns
    the webview URL the browser should open.
    """
    try:
        return service.initiate(user_id)
    except LedgerLinkError as e:
        logger.error("Bank link error for user %s: %s", user_id, e)
        raise _http_error(e, "Could not start the bank connection") from e


@app.get("/connections/callback")
def connection_callback(
    connection_id: Optional[str] = Query(None, description="Aggregator connection id"),
    state: Optional[str] = Query(None, description="'error' when the bank login failed"),
    handler: ConnectionLifecycleHandler = Depends(get_lifecycle_handler),
    app_settings: Settings = Depends(get_settings),
):
    """
    Aggregator redirect target after the bank login.

    Redirects to the dashboard with ``success=bank_connected`` or
    ``error=invalid_callback|connection_failed|sync_failed``. The first sync
    runs in the background; its failures only show up on the connection.
    """
    try:
        outcome = handler.handle_callback(connection_id, state)
        query = {outcome.query_param: outcome.code.value}
    except PersistenceError as e:
        logger.error("Callback error: %s", e, extra={"external_connection_id": connection_id})
        query = {"error": "sync_failed"}
    return RedirectResponse(url=f"{app_settings.app_url.rstrip('/')}/dashboard?{urlencode(query)}")


@app.post("/sync", response_model=SyncResponse)
def sync_connection(
    request: SyncRequest,
    user_id: str = Depends(get_current_user_id),
    stores: Stores = Depends(get_stores),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Synchronize one of the caller's connections and wait for the result."""
    try:
        connection = stores.connections.get_for_user(request.connection_id, user_id)
        if connection is None:
            raise NotFoundError(f"Connection {request.connection_id} not found")
        result = engine.sync_connection(connection.external_connection_id)
    except LedgerLinkError as e:
        logger.error("Sync error: %s", e, extra={"connection_id": request.connection_id})
        raise _http_error(e, "Synchronization failed") from e

    return SyncResponse(
        accounts_synced=result.accounts_synced,
        transactions_synced=result.transactions_synced,
        accounts_failed=result.accounts_failed,
        message="Synchronization succeeded",
    )


@app.get("/connections", response_model=ConnectionsResponse)
def list_connections(
    user_id: str = Depends(get_current_user_id),
    stores: Stores = Depends(get_stores),
):
    """List the caller's bank connections."""
    try:
        connections = stores.connections.list_for_user(user_id)
    except PersistenceError as e:
        raise _http_error(e, "Could not load connections") from e
    return ConnectionsResponse(user_id=user_id, connections=connections)


@app.get("/connections/{connection_id}/sync-logs", response_model=SyncLogsResponse)
def list_sync_logs(
    connection_id: str,
    limit: int = Query(20, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    stores: Stores = Depends(get_stores),
):
    """Sync history of one of the caller's connections, newest first."""
    try:
        if stores.connections.get_for_user(connection_id, user_id) is None:
            raise NotFoundError(f"Connection {connection_id} not found")
        logs = SyncLedger(stores.sync_logs).history(connection_id, limit=limit)
    except LedgerLinkError as e:
        raise _http_error(e, "Could not load sync logs") from e
    return SyncLogsResponse(connection_id=connection_id, logs=logs)


@app.get("/accounts", response_model=AccountsResponse)
def list_accounts(
    user_id: str = Depends(get_current_user_id),
    stores: Stores = Depends(get_stores),
):
    """List the caller's accounts."""
    try:
        accounts = stores.accounts.list_for_user(user_id)
    except PersistenceError as e:
        raise _http_error(e, "Could not load accounts") from e
    return AccountsResponse(user_id=user_id, accounts=accounts)


@app.get("/accounts/summary", response_model=AccountSummary)
def accounts_summary(
    user_id: str = Depends(get_current_user_id),
    stores: Stores = Depends(get_stores),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Net worth, assets and liabilities over included accounts, plus this month's transaction count."""
    month_start = clock().date().replace(day=1)
    try:
        accounts = stores.accounts.list_for_user(user_id)
        connections = stores.connections.list_for_user(user_id)
        transactions_this_month = stores.transactions.count_for_user_since(user_id, month_start)
    except PersistenceError as e:
        raise _http_error(e, "Could not load accounts") from e
    return summarize_accounts(accounts, connections, transactions_this_month)


@app.get("/accounts/{account_id}/transactions", response_model=TransactionsResponse)
def list_account_transactions(
    account_id: str,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    stores: Stores = Depends(get_stores),
):
    """Transactions of one of the caller's accounts, newest first."""
    try:
        if stores.accounts.get_for_user(account_id, user_id) is None:
            raise NotFoundError(f"Account {account_id} not found")
        transactions = stores.transactions.list_for_account(account_id, limit=limit, offset=offset)
    except LedgerLinkError as e:
        raise _http_error(e, "Could not load transactions") from e
    return TransactionsResponse(account_id=account_id, transactions=transactions)


@app.get("/accounts/{account_id}/balance-history", response_model=BalanceHistoryResponse)
def list_balance_history(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    stores: Stores = Depends(get_stores),
):
    """Daily balance snapshots of one of the caller's accounts, oldest first."""
    try:
        if stores.accounts.get_for_user(account_id, user_id) is None:
            raise NotFoundError(f"Account {account_id} not found")
        balances = stores.balances.list_for_account(account_id)
    except LedgerLinkError as e:
        raise _http_error(e, "Could not load balance history") from e
    return BalanceHistoryResponse(account_id=account_id, balances=balances)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
