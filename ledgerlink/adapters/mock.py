"""Mock aggregator gateway for local runs and tests without API calls."""
import itertools
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote
from ledgerlink.adapters.base import AggregatorGateway
from ledgerlink.errors import UpstreamError
from ledgerlink.models.aggregator import (
    AggregatorConnection,
    AggregatorTransaction,
    AggregatorUser,
)


class MockAggregatorGateway(AggregatorGateway):
    """In-memory aggregator returning deterministic data."""

    # Every new mock user starts with these accounts and transactions
    SAMPLE_ACCOUNTS = [
        {
            "id": "acc-checking",
            "name": "Compte Courant",
            "balance": "1523.45",
            "currency": "EUR",
            "type": "checking",
            "bank": {"id": "1", "name": "Mock Bank", "logo_url": "https://example.test/mock-bank.png"},
        },
        {
            "id": "acc-savings",
            "name": "Livret A",
            "balance": "8200.00",
            "currency": "EUR",
            "type": "savings",
            "bank": {"id": "1", "name": "Mock Bank", "logo_url": "https://example.test/mock-bank.png"},
        },
        {
            "id": "acc-card",
            "name": "Carte Visa",
            "balance": "-245.10",
            "currency": "EUR",
            "type": "card",
            "bank": {"id": "1", "name": "Mock Bank", "logo_url": None},
        },
    ]

    SAMPLE_TRANSACTIONS = {
        "acc-checking": [
            {"id": "tx-1", "date": "2024-01-15", "description": "CARREFOUR CITY", "amount": "-42.80",
             "currency": "EUR", "state": "completed", "category": {"id": 1, "name": "Groceries"}},
            {"id": "tx-2", "date": "2024-01-16", "description": None, "original_description": "VIR SALAIRE",
             "amount": "2450.00", "currency": "EUR", "state": "completed", "category": None},
            {"id": "tx-3", "date": "2024-01-17", "amount": "-9.99", "currency": "EUR", "state": "pending"},
        ],
        "acc-card": [
            {"id": "tx-4", "date": "2024-01-16", "description": "SNCF", "amount": "-89.00",
             "currency": "EUR", "state": "completed", "category": {"id": 7, "name": "Transport"}},
        ],
    }

    def __init__(
        self,
        accounts: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        transactions: Optional[Dict[Tuple[str, str], List[Dict[str, Any]]]] = None,
        client_id: str = "mock-client",
        webview_url: str = "https://webview.mock.test",
    ):
        """
        Args:
            accounts: Raw account records per external user id
            transactions: Raw transaction records per (external user id, account id)
            client_id: Client id embedded in webview URLs
            webview_url: Base URL of the fake webview
        """
        self.accounts = accounts if accounts is not None else {}
        self.transactions = transactions if transactions is not None else {}
        self.client_id = client_id
        self.webview_url = webview_url
        self.failures: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, tuple]] = []
        self._ids = itertools.count(1)

    def fail(self, operation: str, error: Optional[Exception] = None) -> None:
        """Make an operation raise (UpstreamError by default) until cleared."""
        self.failures[operation] = error or UpstreamError(f"mock {operation} failure", status_code=503)

    def clear_failures(self) -> None:
        self.failures.clear()

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        if operation in self.failures:
            raise self.failures[operation]

    def create_user_and_token(self) -> AggregatorUser:
        self._record("create_user_and_token")
        user_id = str(next(self._ids))
        self.accounts.setdefault(user_id, [dict(a) for a in self.SAMPLE_ACCOUNTS])
        for account_id, txs in self.SAMPLE_TRANSACTIONS.items():
            self.transactions.setdefault((user_id, account_id), [dict(t) for t in txs])
        return AggregatorUser(auth_token=f"mock-token-{user_id}", external_user_id=user_id)

    def get_webview_url(self, auth_token: str, redirect_url: str) -> str:
        return (
            f"{self.webview_url}/auth/webview/{self.client_id}"
            f"?token={auth_token}&redirect_uri={quote(redirect_url, safe='')}"
        )

    def list_accounts(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        self._record("list_accounts", external_user_id)
        return [dict(a) for a in self.accounts.get(external_user_id, [])]

    def list_transactions(
        self,
        external_user_id: str,
        account_id: str,
        *,
        min_date: Optional[date] = None,
        max_date: Optional[date] = None,
        limit: int = AggregatorGateway.DEFAULT_TRANSACTION_LIMIT,
        offset: int = 0,
        auth_token: Optional[str] = None,
    ) -> List[AggregatorTransaction]:
        self._record("list_transactions", external_user_id, account_id, min_date, max_date, limit, offset)
        records = [
            AggregatorTransaction.model_validate(t)
            for t in self.transactions.get((external_user_id, account_id), [])
        ]
        # min_date is ignored so the fixed sample dates stay visible
        if max_date:
            records = [t for t in records if t.date <= max_date]
        return records[offset:offset + limit]

    def trigger_sync(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._record("trigger_sync", external_user_id)
        return {"id_user": external_user_id, "state": None}

    def list_connections(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> List[AggregatorConnection]:
        self._record("list_connections", external_user_id)
        if external_user_id not in self.accounts:
            return []
        return [AggregatorConnection(id=f"conn-{external_user_id}", user_id=external_user_id, bank_id="1")]

    def delete_user(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> None:
        self._record("delete_user", external_user_id)
        self.accounts.pop(external_user_id, None)
        for key in [k for k in self.transactions if k[0] == external_user_id]:
            del self.transactions[key]
