"""Base bank aggregator gateway interface."""
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional
from ledgerlink.models.aggregator import (
    AggregatorConnection,
    AggregatorTransaction,
    AggregatorUser,
)


class AggregatorGateway(ABC):
    """
    Abstract base class for bank aggregator gateways.

    Implementations are stateless apart from their configuration, so one
    instance is shared by every synchronization. None of the operations
    retry; failures raise UpstreamError and the caller decides what to do.
    """

    DEFAULT_TRANSACTION_LIMIT = 100

    @abstractmethod
    def create_user_and_token(self) -> AggregatorUser:
        """
        Create an aggregator-side user and a permanent token for it.

        Returns:
            AggregatorUser with the auth token and the external user id

        Raises:
            UpstreamError: If the call fails or the token or id is missing
        """

    @abstractmethod
    def get_webview_url(self, auth_token: str, redirect_url: str) -> str:
        """Build the URL of the aggregator's bank-connection webview (no network call)."""

    @abstractmethod
    def list_accounts(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List the user's raw account records, in aggregator order. Empty list if none.

        Records are returned unvalidated; callers parse each one with
        ``AggregatorAccount.model_validate`` so a malformed record only affects
        that account.
        """

    @abstractmethod
    def list_transactions(
        self,
        external_user_id: str,
        account_id: str,
        *,
        min_date: Optional[date] = None,
        max_date: Optional[date] = None,
        limit: int = DEFAULT_TRANSACTION_LIMIT,
        offset: int = 0,
        auth_token: Optional[str] = None,
    ) -> List[AggregatorTransaction]:
        """
        List transactions of one account within a date window.

        Args:
            external_user_id: Aggregator user identifier
            account_id: Aggregator account identifier
            min_date: Earliest transaction date (inclusive), unbounded if None
            max_date: Latest transaction date (inclusive), unbounded if None
            limit: Page size
            offset: Page offset
            auth_token: User token sent as a bearer token

        Returns:
            Transactions in aggregator order
        """

    @abstractmethod
    def trigger_sync(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Ask the aggregator to refresh the user's connections."""

    @abstractmethod
    def list_connections(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> List[AggregatorConnection]:
        """List the user's aggregator-side connections."""

    @abstractmethod
    def delete_user(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> None:
        """Delete the aggregator-side user and everything attached to it."""
