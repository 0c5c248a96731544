"""Delivery strategies for sandboxmail."""

from .auto import create_strategy
from .delivery_strategy import DeliveryStrategy
from .polling_strategy import PollingStrategy
from .sse_strategy import SSEStrategy, parse_sse_event

__all__ = [
    "DeliveryStrategy",
    "PollingStrategy",
    "SSEStrategy",
    "create_strategy",
    "parse_sse_event",
]
