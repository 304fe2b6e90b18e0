"""Powens bank aggregator gateway over HTTP."""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from ledgerlink.adapters.base import AggregatorGateway
from ledgerlink.errors import UpstreamError
from ledgerlink.models.aggregator import (
    AggregatorConnection,
    AggregatorTransaction,
    AggregatorUser,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class PowensGateway(AggregatorGateway):
    """Powens API client built on a single shared httpx.Client."""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        *,
        webview_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        # The webview lives on the same host, outside the versioned API prefix
        self.webview_url = (webview_url or self.base_url.removesuffix("/2.0")).rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self.client.close()

    def create_user_and_token(self) -> AggregatorUser:
        data = self._request(
            "POST",
            "/auth/init",
            json={"client_id": self.client_id, "client_secret": self.client_secret},
        )
        auth_token = data.get("auth_token")
        id_user = data.get("id_user")
        if not auth_token or id_user in (None, ""):
            logger.error("Aggregator user creation returned incomplete data: keys=%s", sorted(data))
            raise UpstreamError("Aggregator user creation returned no token or user id")
        return AggregatorUser(auth_token=auth_token, external_user_id=str(id_user))

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
        data = self._request("GET", f"/users/{external_user_id}/accounts", auth_token=auth_token)
        accounts = data.get("accounts") or []
        if not isinstance(accounts, list):
            raise UpstreamError("Aggregator returned a malformed account list")
        return accounts

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
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if min_date:
            params["min_date"] = min_date.isoformat()
        if max_date:
            params["max_date"] = max_date.isoformat()
        data = self._request(
            "GET",
            f"/users/{external_user_id}/accounts/{account_id}/transactions",
            auth_token=auth_token,
            params=params,
        )
        return self._parse_list(AggregatorTransaction, data.get("transactions") or [], "transaction")

    def trigger_sync(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._request("POST", f"/users/{external_user_id}/connections", auth_token=auth_token, json={})

    def list_connections(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> List[AggregatorConnection]:
        data = self._request("GET", f"/users/{external_user_id}/connections", auth_token=auth_token)
        return self._parse_list(AggregatorConnection, data.get("connections") or [], "connection")

    def delete_user(
        self,
        external_user_id: str,
        auth_token: Optional[str] = None,
    ) -> None:
        self._request("DELETE", f"/users/{external_user_id}", auth_token=auth_token)

    def _request(
        self,
        method: str,
        path: str,
        *,
        auth_token: Optional[str] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> dict:
        """Make a call to the aggregator API and return the decoded JSON object."""
        headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else None
        try:
            resp = self.client.request(method, path, headers=headers, params=params, json=json)
        except httpx.HTTPError as e:
            logger.error("Aggregator request %s %s failed: %s", method, path, e)
            raise UpstreamError(f"Aggregator request {method} {path} failed: {e}") from e

        if not resp.is_success:
            logger.error("Aggregator API error %s on %s %s: %s", resp.status_code, method, path, resp.text[:200])
            raise UpstreamError(
                f"Aggregator returned {resp.status_code} for {method} {path}",
                status_code=resp.status_code,
            )

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"Aggregator returned invalid JSON for {method} {path}") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"Aggregator returned unexpected payload for {method} {path}")
        return data

    @staticmethod
    def _parse_list(model: Type[RecordT], items: Any, what: str) -> List[RecordT]:
        if not isinstance(items, list):
            raise UpstreamError(f"Aggregator returned a malformed {what} list")
        try:
            return [model.model_validate(item) for item in items]
        except ValidationError as e:
            raise UpstreamError(f"Aggregator returned a malformed {what}: {e.error_count()} error(s)") from e
