"""Factory for creating the aggregator gateway."""
from ledgerlink.adapters.base import AggregatorGateway
from ledgerlink.adapters.mock import MockAggregatorGateway
from ledgerlink.adapters.powens import PowensGateway
from ledgerlink.config import Settings


def get_aggregator_gateway(settings: Settings) -> AggregatorGateway:
    """
    Create the gateway selected by ``settings.aggregator_provider``.

    Args:
        settings: Application settings ("powens" or "mock" provider)

    Returns:
        AggregatorGateway instance
    """
    provider = settings.aggregator_provider.lower()
    if provider == "mock":
        return MockAggregatorGateway(client_id=settings.powens_client_id or "mock-client")
    elif provider == "powens":
        return PowensGateway(
            settings.powens_api_url,
            settings.powens_client_id,
            settings.powens_client_secret,
            webview_url=settings.powens_webview_url or None,
            timeout=settings.http_timeout_seconds,
        )
    else:
        raise ValueError(f"Unknown aggregator provider: {settings.aggregator_provider}")
