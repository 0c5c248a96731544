"""Abstract delivery strategy interface for sandboxmail."""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

logger = logging.getLogger("sandboxmail")

if TYPE_CHECKING:
    from ..inbox import Inbox
    from ..sync import SyncEngine


def jittered_delay(delay_ms: float, jitter_factor: float) -> float:
    """Apply symmetric random jitter to a delay and convert it to seconds."""
    return max(delay_ms * (1 + random.uniform(-jitter_factor, jitter_factor)), 0) / 1000


class DeliveryStrategy(ABC):
    """Background producer that keeps subscribed inboxes in sync.

    Strategies never publish on their own: they decide *when* an inbox
    needs attention and hand it to the ``SyncEngine``. Inboxes are keyed
    by their inbox hash.
    """

    name: str = ""

    def __init__(self, sync_engine: SyncEngine) -> None:
        self._sync_engine = sync_engine
        self._inboxes: dict[str, Inbox] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._running = False
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def inbox_hashes(self) -> list[str]:
        return list(self._inboxes)

    @abstractmethod
    async def start(self) -> None:
        """Start producing for every inbox added so far."""
        pass  # pragma: no cover

    @abstractmethod
    async def stop(self) -> None:
        """Stop all background work and close the inbox fanouts."""
        pass  # pragma: no cover

    @abstractmethod
    async def add(self, inbox: Inbox) -> None:
        """Start delivering for an inbox.

        After ``stop`` this only closes the inbox fanout.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def remove(self, inbox_hash: str) -> None:
        """Stop delivering for an inbox. Unknown hashes are ignored."""
        pass  # pragma: no cover

    def _spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task[Any]:
        """Run a background coroutine whose failure is logged, not raised."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.warning("%s failed: %s", description, exc, exc_info=exc)

        task.add_done_callback(_done)
        return task

    async def _cancel_tasks(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _close_fanouts(self) -> None:
        for inbox in self._inboxes.values():
            inbox._fanout.close()
        self._inboxes.clear()
