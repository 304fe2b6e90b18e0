"""Tests for starting a bank link."""
from urllib.parse import parse_qs, urlparse
import pytest
from ledgerlink.config import Settings
from ledgerlink.errors import ConfigurationError, UpstreamError
from ledgerlink.models.records import ConnectionStatus
from ledgerlink.services.linking import BankLinkService


def make_settings(**overrides):
    values = dict(app_url="https://app.test/", aggregator_provider="mock", powens_client_id="client-1", _env_file=None)
    values.update(overrides)
    return Settings(**values)


def test_initiate_creates_pending_connection(gateway, stores):
    service = BankLinkService(gateway, stores.connections, make_settings())

    response = service.initiate("user-1")

    connection = stores.connections.get(response.connection_id)
    assert connection.user_id == "user-1"
    assert connection.status == ConnectionStatus.PENDING
    assert connection.external_connection_id == response.external_user_id == "1"
    assert connection.auth_token == "mock-token-1"

    query = parse_qs(urlparse(response.url).query)
    assert query["token"] == ["mock-token-1"]
    assert query["redirect_uri"] == ["https://app.test/connections/callback"]


def test_missing_credentials_rejected(gateway, stores):
    service = BankLinkService(gateway, stores.connections, make_settings(aggregator_provider="powens"))

    with pytest.raises(ConfigurationError):
        service.initiate("user-1")
    assert gateway.calls == []


def test_aggregator_failure_stores_nothing(gateway, stores):
    gateway.fail("create_user_and_token")
    service = BankLinkService(gateway, stores.connections, make_settings())

    with pytest.raises(UpstreamError):
        service.initiate("user-1")
    assert stores.connections.list_for_user("user-1") == []
