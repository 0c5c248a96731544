"""Delivery strategy selection for sandboxmail."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import StrategyError
from ..types import DeliveryStrategyType, PollingConfig, ServerInfo, SSEConfig
from .delivery_strategy import DeliveryStrategy
from .polling_strategy import PollingStrategy
from .sse_strategy import SSEStrategy

logger = logging.getLogger("sandboxmail")

if TYPE_CHECKING:
    from ..http import ApiClient
    from ..sync import SyncEngine


def create_strategy(
    strategy_type: DeliveryStrategyType,
    api_client: ApiClient,
    sync_engine: SyncEngine,
    server_info: ServerInfo,
    *,
    polling_config: PollingConfig | None = None,
    sse_config: SSEConfig | None = None,
) -> DeliveryStrategy:
    """Build the delivery strategy for a client.

    ``AUTO`` picks SSE when the server advertises push support and
    polling otherwise.

    Raises:
        StrategyError: If the strategy type is not recognized.
    """
    if strategy_type == DeliveryStrategyType.AUTO:
        strategy_type = (
            DeliveryStrategyType.SSE if server_info.supports_push else DeliveryStrategyType.POLLING
        )
        logger.info("Auto-selected %s delivery", strategy_type.value)

    if strategy_type == DeliveryStrategyType.SSE:
        return SSEStrategy(api_client, sync_engine, sse_config)
    if strategy_type == DeliveryStrategyType.POLLING:
        return PollingStrategy(sync_engine, polling_config)
    raise StrategyError(f"Unknown delivery strategy: {strategy_type!r}")
