"""Polling delivery strategy for sandboxmail."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from ..types import PollingConfig
from .delivery_strategy import DeliveryStrategy, jittered_delay

logger = logging.getLogger("sandboxmail")

if TYPE_CHECKING:
    from ..inbox import Inbox
    from ..sync import SyncEngine


class PollingStrategy(DeliveryStrategy):
    """Polling-based delivery strategy with exponential backoff.

    Each inbox gets its own timer task. Every tick runs a drift check; a
    tick that delivers mail resets the interval, an idle tick grows it
    by ``backoff_multiplier`` up to ``max_backoff``.
    """

    name = "polling"

    def __init__(
        self,
        sync_engine: SyncEngine,
        config: PollingConfig | None = None,
    ) -> None:
        """Initialize the polling strategy.

        Args:
            sync_engine: Engine that performs the drift checks.
            config: Polling configuration options.
        """
        super().__init__(sync_engine)
        self._config = config or PollingConfig()
        self._polling_tasks: dict[str, asyncio.Task[None]] = {}

    async def start(self) -> None:
        if self._running or self._stopped:
            return
        self._running = True
        for inbox in self._inboxes.values():
            self._start_polling(inbox)

    async def stop(self) -> None:
        """Stop the strategy and cancel all polling tasks."""
        self._running = False
        self._stopped = True

        for task in self._polling_tasks.values():
            task.cancel()
        if self._polling_tasks:
            await asyncio.gather(*self._polling_tasks.values(), return_exceptions=True)
        self._polling_tasks.clear()

        await self._cancel_tasks()
        self._close_fanouts()

    async def add(self, inbox: Inbox) -> None:
        if self._stopped:
            inbox._fanout.close()
            return
        self._inboxes[inbox.inbox_hash] = inbox
        if self._running:
            self._start_polling(inbox)

    async def remove(self, inbox_hash: str) -> None:
        self._inboxes.pop(inbox_hash, None)
        task = self._polling_tasks.pop(inbox_hash, None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _start_polling(self, inbox: Inbox) -> None:
        if inbox.inbox_hash in self._polling_tasks:
            return
        self._polling_tasks[inbox.inbox_hash] = asyncio.create_task(self._poll_inbox(inbox))

    async def _poll_inbox(self, inbox: Inbox) -> None:
        """Poll an inbox until the strategy stops or the inbox is removed.

        Args:
            inbox: The inbox to poll.
        """
        interval: float = self._config.initial_interval

        while self._running:
            try:
                delivered = await self._sync_engine.sync(inbox)
            except Exception as e:
                logger.warning("Error polling inbox %s: %s", inbox.email_address, e, exc_info=True)
                delivered = []

            if delivered:
                interval = self._config.initial_interval

            await asyncio.sleep(jittered_delay(interval, self._config.jitter_factor))

            if not delivered:
                interval = min(
                    interval * self._config.backoff_multiplier,
                    self._config.max_backoff,
                )
