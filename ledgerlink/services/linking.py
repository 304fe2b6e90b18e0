"""Starting a bank link: aggregator user, pending connection, webview URL."""
import logging
from ledgerlink.adapters.base import AggregatorGateway
from ledgerlink.config import Settings
from ledgerlink.errors import ConfigurationError
from ledgerlink.models.summary import BankLinkResponse
from ledgerlink.storage.database import ConnectionStore
from ledgerlink.utils.privacy import mask_url_token

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/connections/callback"


class BankLinkService:
    """Creates the aggregator-side user and the local pending connection."""

    def __init__(self, gateway: AggregatorGateway, connections: ConnectionStore, settings: Settings):
        self.gateway = gateway
        self.connections = connections
        self.settings = settings

    def check_configuration(self) -> None:
        """Raise ConfigurationError when the aggregator cannot be used."""
        if self.settings.aggregator_provider.lower() != "mock" and (
            not self.settings.powens_client_id or not self.settings.powens_client_secret
        ):
            raise ConfigurationError("Aggregator credentials are not configured")
        if not self.settings.app_url:
            raise ConfigurationError("app_url is not configured")

    def initiate(self, user_id: str) -> BankLinkResponse:
        """
        Start linking a bank for a user.

        Raises:
            ConfigurationError: If credentials or the app URL are missing
            UpstreamError: If the aggregator user cannot be created
            PersistenceError: If the connection cannot be stored
        """
        self.check_configuration()

        aggregator_user = self.gateway.create_user_and_token()
        redirect_url = f"{self.settings.app_url.rstrip('/')}{CALLBACK_PATH}"
        url = self.gateway.get_webview_url(aggregator_user.auth_token, redirect_url)

        connection = self.connections.create(
            user_id=user_id,
            external_connection_id=aggregator_user.external_user_id,
            auth_token=aggregator_user.auth_token,
        )
        logger.info(
            "Bank link started",
            extra={
                "connection_id": connection.id,
                "external_connection_id": aggregator_user.external_user_id,
                "webview_url": mask_url_token(url),
            },
        )
        return BankLinkResponse(
            url=url,
            external_user_id=aggregator_user.external_user_id,
            connection_id=connection.id,
        )
