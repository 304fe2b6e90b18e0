"""Shared service instances and FastAPI dependencies."""
import logging
from datetime import datetime
from typing import Callable, Optional
from fastapi import Depends, Header, HTTPException
from ledgerlink.adapters import AggregatorGateway, PowensGateway, get_aggregator_gateway
from ledgerlink.config import Settings, settings
from ledgerlink.services import (
    BankLinkService,
    ConnectionLifecycleHandler,
    ReconciliationEngine,
    SyncDispatcher,
)
from ledgerlink.storage.database import Stores, get_db
from ledgerlink.utils.timestamp import utc_now

logger = logging.getLogger(__name__)

# Global instances, built on first use and shared by every request and sync
_gateway: Optional[AggregatorGateway] = None
_engine: Optional[ReconciliationEngine] = None
_dispatcher: Optional[SyncDispatcher] = None


def get_settings() -> Settings:
    return settings


def get_stores() -> Stores:
    return get_db()


def get_clock() -> Callable[[], datetime]:
    """Source of the current time for date-relative queries."""
    return utc_now


def get_gateway() -> AggregatorGateway:
    global _gateway
    if _gateway is None:
        _gateway = get_aggregator_gateway(settings)
    return _gateway


def get_engine() -> ReconciliationEngine:
    global _engine
    if _engine is None:
        _engine = ReconciliationEngine(
            get_gateway(),
            get_db(),
            window_days=settings.sync_window_days,
            transaction_limit=settings.sync_transaction_limit,
        )
    return _engine


def get_dispatcher() -> SyncDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = SyncDispatcher(get_engine(), max_workers=settings.sync_workers)
    return _dispatcher


def get_lifecycle_handler(
    stores: Stores = Depends(get_stores),
    dispatcher: SyncDispatcher = Depends(get_dispatcher),
) -> ConnectionLifecycleHandler:
    return ConnectionLifecycleHandler(stores.connections, dispatcher)


def get_bank_link_service(
    gateway: AggregatorGateway = Depends(get_gateway),
    stores: Stores = Depends(get_stores),
    app_settings: Settings = Depends(get_settings),
) -> BankLinkService:
    return BankLinkService(gateway, stores.connections, app_settings)


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity supplied by the authentication layer in front of the API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail={"error": "Not authenticated"})
    return x_user_id


def shutdown_services() -> None:
    """Stop background syncs and close the aggregator client."""
    global _gateway, _engine, _dispatcher
    if _dispatcher is not None:
        _dispatcher.shutdown(wait=True)
        _dispatcher = None
    if isinstance(_gateway, PowensGateway):
        _gateway.close()
    _gateway = None
    _engine = None
    logger.info("Services shut down")
