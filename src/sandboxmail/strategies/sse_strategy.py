"""SSE (Server-Sent Events) delivery strategy for sandboxmail."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING

from httpx_sse import ServerSentEvent

from ..errors import SSEError
from ..types import SSEConfig, SSEEvent
from .delivery_strategy import DeliveryStrategy, jittered_delay

logger = logging.getLogger("sandboxmail")

if TYPE_CHECKING:
    from ..http import ApiClient
    from ..inbox import Inbox
    from ..sync import SyncEngine

_EMAIL_EVENT_TYPES = ("email", "message")


def parse_sse_event(event: ServerSentEvent) -> SSEEvent | None:
    """Parse a new-email frame from the event stream.

    Returns:
        The notification, or None for frames that are not email events
        or that lack an inbox or email ID.
    """
    if event.event not in _EMAIL_EVENT_TYPES or not event.data:
        return None
    try:
        data = json.loads(event.data)
    except json.JSONDecodeError as e:
        logger.debug("Failed to parse SSE event as JSON: %s", e)
        return None
    if not isinstance(data, dict):
        return None

    inbox_hash = data.get("inboxId")
    email_id = data.get("emailId")
    if not isinstance(inbox_hash, str) or not isinstance(email_id, str):
        return None
    metadata = data.get("encryptedMetadata")
    return SSEEvent(
        inbox_hash=inbox_hash,
        email_id=email_id,
        encrypted_metadata=metadata if isinstance(metadata, dict) else None,
    )


class SSEStrategy(DeliveryStrategy):
    """Server-Sent Events delivery strategy for real-time email notifications.

    One long-lived stream covers every added inbox. Each connect (first
    or after a drop) runs a catch-up sync for all inboxes before events
    are read; each event then delivers the announced email directly.
    """

    name = "sse"

    def __init__(
        self,
        api_client: ApiClient,
        sync_engine: SyncEngine,
        config: SSEConfig | None = None,
    ) -> None:
        """Initialize the SSE strategy.

        Args:
            api_client: The API client that opens the event stream.
            sync_engine: Engine that fetches and publishes emails.
            config: SSE configuration options.
        """
        super().__init__(sync_engine)
        self._api_client = api_client
        self._config = config or SSEConfig()
        self._stream_task: asyncio.Task[None] | None = None
        self._connected = asyncio.Event()
        self._error: BaseException | None = None

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    @property
    def error(self) -> BaseException | None:
        """The error that ended the stream after the reconnect budget ran out."""
        return self._error

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until the stream is connected.

        Raises:
            SSEError: If the stream gave up or the timeout (seconds) elapsed.
        """
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise SSEError("SSE connection timed out") from None
        if self._error is not None:
            raise SSEError(str(self._error)) from self._error

    async def start(self) -> None:
        if self._running or self._stopped:
            return
        self._running = True
        await self._restart_stream()

    async def stop(self) -> None:
        """Close the stream, cancel pending deliveries and close the fanouts."""
        self._running = False
        self._stopped = True
        await self._cancel_stream()
        await self._cancel_tasks()
        self._close_fanouts()

    async def add(self, inbox: Inbox) -> None:
        if self._stopped:
            inbox._fanout.close()
            return
        self._inboxes[inbox.inbox_hash] = inbox
        if self._running:
            await self._restart_stream()

    async def remove(self, inbox_hash: str) -> None:
        if self._inboxes.pop(inbox_hash, None) is None:
            return
        if self._running:
            await self._restart_stream()

    async def _cancel_stream(self) -> None:
        """Tear down the stream task only; in-flight syncs keep running."""
        task, self._stream_task = self._stream_task, None
        # A finished task already reported its error through the done callback.
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._connected.clear()

    async def _restart_stream(self) -> None:
        """Reopen the stream with the current inbox membership."""
        await self._cancel_stream()
        if not self._running or not self._inboxes:
            return

        self._error = None
        self._stream_task = asyncio.create_task(self._run_stream())
        self._stream_task.add_done_callback(self._on_stream_task_done)

    def _on_stream_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return

        exc = task.exception()
        if exc is None:
            return
        self._error = exc
        # Unblock wait_connected() callers so they observe the error.
        self._connected.set()
        logger.warning("Event stream stopped: %s", exc)
        if self._config.on_error is not None:
            try:
                self._config.on_error(exc)
            except Exception as callback_error:
                logger.warning("Error in SSE error callback: %s", callback_error, exc_info=True)

    async def _run_stream(self) -> None:
        """Run the stream with reconnection and exponential backoff.

        Raises:
            SSEError: When ``max_reconnect_attempts`` consecutive attempts fail.
        """
        config = self._config
        failures = 0
        delay: float = config.reconnect_interval

        while self._running and self._inboxes:
            try:
                async with self._api_client.open_event_stream(list(self._inboxes)) as events:
                    failures = 0
                    delay = config.reconnect_interval
                    logger.info("Event stream connected for %d inbox(es)", len(self._inboxes))
                    self._connected.set()
                    await self._catch_up()
                    async for event in events:
                        self._handle_event(event)
                logger.info("Event stream closed by server, reconnecting")
            except Exception as e:
                failures += 1
                if config.max_reconnect_attempts is not None and (
                    failures >= config.max_reconnect_attempts
                ):
                    raise SSEError(
                        f"Max reconnection attempts ({config.max_reconnect_attempts}) exceeded"
                    ) from e
                logger.info("Event stream error (%s), reconnecting in ~%d ms", e, delay)

            self._connected.clear()
            await asyncio.sleep(jittered_delay(delay, config.jitter_factor))
            delay = min(delay * config.backoff_multiplier, config.max_reconnect_interval)

    async def _catch_up(self) -> None:
        """Sync every subscribed inbox, waiting for all of them to finish."""
        tasks = [
            self._spawn(
                self._sync_engine.sync(inbox),
                f"Catch-up sync for {inbox.email_address}",
            )
            for inbox in list(self._inboxes.values())
        ]
        if tasks:
            await asyncio.wait(tasks)

    def _handle_event(self, event: ServerSentEvent) -> None:
        notification = parse_sse_event(event)
        if notification is None:
            logger.debug("Ignoring SSE frame (event=%r)", event.event)
            return

        inbox = self._inboxes.get(notification.inbox_hash)
        if inbox is None:
            logger.debug("SSE event for unknown inbox %s", notification.inbox_hash)
            return

        self._spawn(
            self._sync_engine.deliver(inbox, notification.email_id),
            f"Delivery of email {notification.email_id}",
        )
