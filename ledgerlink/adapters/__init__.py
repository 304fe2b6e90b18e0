from .base import AggregatorGateway
from .mock import MockAggregatorGateway
from .powens import PowensGateway
from .factory import get_aggregator_gateway

__all__ = [
    "AggregatorGateway",
    "MockAggregatorGateway",
    "PowensGateway",
    "get_aggregator_gateway",
]
