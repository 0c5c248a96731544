"""SandboxMailClient - Main entry point for sandboxmail."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_POLLING_MAX_BACKOFF_MS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_RETRY_STATUS_CODES,
    DEFAULT_SSE_MAX_RECONNECT_INTERVAL_MS,
    DEFAULT_SSE_RECONNECT_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
    FANOUT_CHANNEL_CAPACITY,
    MIN_TTL_SECONDS,
)
from .crypto import from_base64url, generate_keypair, validate_server_public_key
from .descriptor import (
    InboxDescriptor,
    dumps_exported_inbox,
    exported_inbox_from_dict,
    loads_exported_inbox,
)
from .email import Email
from .errors import (
    Base64URLDecodeError,
    ClientClosedError,
    InboxAlreadyExistsError,
    InboxNotFoundError,
    InvalidImportDataError,
    InvalidSizeError,
    InvalidTTLError,
    MissingCredentialsError,
    StrategyError,
    UnauthorizedError,
)
from .fanout import Channel, Subscription
from .http import ApiClient
from .inbox import Inbox
from .strategies import DeliveryStrategy, create_strategy
from .sync import SyncEngine
from .types import (
    ClientConfig,
    CreateInboxOptions,
    DeliveryStrategyType,
    ErrorCallback,
    ExportedInbox,
    PollingConfig,
    ServerInfo,
    SSEConfig,
    SyncErrorCallback,
)
from .utils import parse_iso_timestamp

logger = logging.getLogger("sandboxmail")


@dataclass(frozen=True)
class InboxEvent:
    """An email delivered to one of several watched inboxes."""

    inbox: Inbox
    email: Email


class InboxWatcher:
    """Merged stream of new emails across several inboxes.

    Example:
        ```python
        async with client.watch_inboxes([inbox1, inbox2]) as watcher:
            async for event in watcher:
                print(event.inbox.email_address, event.email.subject)
        ```

    Events go through one bounded channel; when the consumer falls behind
    by more than its capacity, further events are dropped. The stream ends
    once every watched inbox is closed or ``close`` is called.
    """

    def __init__(self, inboxes: Iterable[Inbox], capacity: int = FANOUT_CHANNEL_CAPACITY) -> None:
        self._channel: Channel[InboxEvent] = Channel(capacity)
        self._subscriptions: list[Subscription[Email]] = []
        self._tasks: list[asyncio.Task[None]] = []
        for inbox in inboxes:
            subscription = inbox.watch()
            self._subscriptions.append(subscription)
            self._tasks.append(asyncio.create_task(self._forward(inbox, subscription)))
        self._active = len(self._tasks)
        if not self._active:
            self._channel.close()

    @property
    def dropped(self) -> int:
        return self._channel.dropped

    @property
    def closed(self) -> bool:
        return self._channel.closed

    async def _forward(self, inbox: Inbox, subscription: Subscription[Email]) -> None:
        try:
            async for email in subscription:
                if not self._channel.try_send(InboxEvent(inbox, email)):
                    logger.debug("Dropped watcher event for %s", inbox.email_address)
        finally:
            self._active -= 1
            if self._active == 0:
                self._channel.close()

    async def get(self) -> InboxEvent:
        """Wait for the next event.

        Raises:
            ChannelClosed: If the watcher is closed and drained.
        """
        return await self._channel.get()

    def __aiter__(self) -> AsyncIterator[InboxEvent]:
        return self._channel.__aiter__()

    async def close(self) -> None:
        """Stop watching and close the event stream."""
        for subscription in self._subscriptions:
            subscription.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._channel.close()

    async def __aenter__(self) -> InboxWatcher:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class SandboxMailClient:
    """Main client for interacting with the mail sandbox API.

    This is the primary entry point for sandboxmail. It owns the
    transport, one delivery strategy and the table of inboxes.

    Example:
        ```python
        async with SandboxMailClient(api_key="your-api-key") as client:
            inbox = await client.create_inbox()
            email = await inbox.wait_for_email()
            print(f"Received: {email.subject}")
        ```
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: int = DEFAULT_RETRY_DELAY_MS,
        retry_on_status_codes: tuple[int, ...] | None = None,
        strategy: DeliveryStrategyType = DeliveryStrategyType.AUTO,
        check_key: bool = False,
        polling_interval: int = DEFAULT_POLLING_INTERVAL_MS,
        polling_max_backoff: int = DEFAULT_POLLING_MAX_BACKOFF_MS,
        sse_reconnect_interval: int = DEFAULT_SSE_RECONNECT_INTERVAL_MS,
        sse_max_reconnect_interval: int = DEFAULT_SSE_MAX_RECONNECT_INTERVAL_MS,
        sse_max_reconnect_attempts: int | None = None,
        on_sse_error: ErrorCallback | None = None,
        on_sync_error: SyncErrorCallback | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: API key for authentication.
            base_url: Base URL for the API server.
            timeout: HTTP request timeout in milliseconds.
            max_retries: Maximum number of retry attempts.
            retry_delay: Initial retry delay in milliseconds.
            retry_on_status_codes: HTTP status codes that trigger retries.
                Default: (408, 429, 500, 502, 503, 504)
            strategy: Delivery strategy type (sse, polling or auto).
            check_key: Validate the API key when the client opens.
            polling_interval: Initial polling interval in milliseconds (default: 2000).
            polling_max_backoff: Maximum polling interval in milliseconds (default: 30000).
            sse_reconnect_interval: Initial SSE reconnection delay in milliseconds
                (default: 1000).
            sse_max_reconnect_interval: Cap on the SSE reconnection delay in
                milliseconds (default: 30000).
            sse_max_reconnect_attempts: Give up after this many consecutive
                failed connections (default: retry forever).
            on_sse_error: Called with the error when the event stream gives up.
            on_sync_error: Called as ``(inbox, email_id, error)`` for every
                email skipped because it failed verification or decryption.

        Raises:
            MissingCredentialsError: If ``api_key`` is empty.
        """
        if not api_key:
            raise MissingCredentialsError("An API key is required")

        self._config = ClientConfig(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            retry_on_status_codes=retry_on_status_codes or DEFAULT_RETRY_STATUS_CODES,
            strategy=strategy,
            check_key=check_key,
        )
        self._polling_config = PollingConfig(
            initial_interval=polling_interval,
            max_backoff=polling_max_backoff,
        )
        self._sse_config = SSEConfig(
            reconnect_interval=sse_reconnect_interval,
            max_reconnect_interval=sse_max_reconnect_interval,
            max_reconnect_attempts=sse_max_reconnect_attempts,
            on_error=on_sse_error,
        )
        self._api_client = ApiClient(self._config)
        self._sync_engine = SyncEngine(self._api_client, on_sync_error)
        self._strategy: DeliveryStrategy | None = None
        self._server_info: ServerInfo | None = None
        self._inboxes: dict[str, Inbox] = {}
        self._inbox_lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._watchers: list[InboxWatcher] = []
        self._initialized = False
        self._closed = False

    async def __aenter__(self) -> SandboxMailClient:
        """Enter async context manager; opens the client."""
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def strategy_name(self) -> str | None:
        """Name of the running delivery strategy, or None before opening."""
        return self._strategy.name if self._strategy is not None else None

    @property
    def inboxes(self) -> list[Inbox]:
        return list(self._inboxes.values())

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClientClosedError("Client is closed")

    async def open(self) -> None:
        """Check the key (if configured), fetch server info and start delivery.

        Called implicitly by the first operation that needs it.
        """
        await self._ensure_initialized()

    async def _ensure_initialized(self) -> None:
        """Initialize the client if not already done."""
        self._ensure_open()
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            self._ensure_open()

            if self._config.check_key and not await self._api_client.check_key():
                raise UnauthorizedError(401, "API key was rejected")

            self._server_info = await self._api_client.get_server_info()

            strategy = create_strategy(
                self._config.strategy,
                self._api_client,
                self._sync_engine,
                self._server_info,
                polling_config=self._polling_config,
                sse_config=self._sse_config,
            )
            await strategy.start()
            self._strategy = strategy
            self._initialized = True
            logger.info("Client ready (%s delivery)", strategy.name)

    async def close(self) -> None:
        """Close the client and release all resources.

        Idempotent. Every subscription and watcher handed out is closed and
        every later operation raises ``ClientClosedError``.

        Note: This does NOT delete inboxes from the server. Inboxes will
        expire based on their TTL. Use delete_all_inboxes() to explicitly
        delete inboxes.
        """
        if self._closed:
            return
        self._closed = True

        watchers, self._watchers = self._watchers, []
        for watcher in watchers:
            await watcher.close()

        if self._strategy is not None:
            await self._strategy.stop()

        async with self._inbox_lock:
            for inbox in self._inboxes.values():
                inbox._close()
            self._inboxes.clear()

        await self._api_client.close()

    async def check_key(self) -> bool:
        """Validate the API key.

        Returns:
            True if the API key is valid.
        """
        self._ensure_open()
        return await self._api_client.check_key()

    async def get_server_info(self) -> ServerInfo:
        """Get server information and capabilities.

        Returns:
            ServerInfo with cryptographic configuration.
        """
        await self._ensure_initialized()
        if self._server_info is None:
            raise StrategyError("Server info is not available; open the client first")
        return self._server_info

    def _validate_ttl(self, ttl: int | None) -> None:
        if ttl is None:
            return
        if ttl < MIN_TTL_SECONDS:
            raise InvalidTTLError(f"TTL must be at least {MIN_TTL_SECONDS} seconds, got {ttl}")
        max_ttl = self._server_info.max_ttl if self._server_info is not None else 0
        if max_ttl and ttl > max_ttl:
            raise InvalidTTLError(f"TTL must be at most {max_ttl} seconds, got {ttl}")

    async def create_inbox(
        self,
        options: CreateInboxOptions | None = None,
    ) -> Inbox:
        """Create a new temporary email inbox.

        Args:
            options: Options for inbox creation (TTL, email address).

        Returns:
            A new Inbox instance, already registered for delivery.

        Raises:
            InvalidTTLError: If the TTL is outside the allowed range.
        """
        await self._ensure_initialized()
        options = options or CreateInboxOptions()
        self._validate_ttl(options.ttl)

        keypair = generate_keypair()
        inbox_data = await self._api_client.create_inbox(
            keypair.public_key_b64,
            ttl=options.ttl,
            email_address=options.email_address,
        )

        try:
            server_sig_pk = from_base64url(inbox_data.server_sig_pk)
        except Base64URLDecodeError as e:
            raise InvalidSizeError(f"Invalid server signing key from server: {e}") from e
        if not validate_server_public_key(server_sig_pk):
            raise InvalidSizeError(
                f"Invalid server signing key length: {len(server_sig_pk)} bytes"
            )

        descriptor = InboxDescriptor(
            email_address=inbox_data.email_address,
            inbox_hash=inbox_data.inbox_hash,
            expires_at=parse_iso_timestamp(inbox_data.expires_at),
            keypair=keypair,
            server_sig_pk=server_sig_pk,
        )
        return await self._register(descriptor)

    async def import_inbox(self, data: ExportedInbox | dict[str, Any]) -> Inbox:
        """Import an inbox from exported data.

        The blob is validated structurally, then the inbox is confirmed to
        still exist on the server before it is registered for delivery.

        Args:
            data: The exported inbox, or its camelCase JSON object.

        Returns:
            The imported Inbox instance.

        Raises:
            InboxAlreadyExistsError: If the inbox is already in this client.
            InvalidImportDataError: If the import data is invalid.
            InboxNotFoundError: If the inbox no longer exists on the server.
        """
        await self._ensure_initialized()
        if not isinstance(data, ExportedInbox):
            data = exported_inbox_from_dict(data)
        descriptor = InboxDescriptor.from_export(data)

        if descriptor.email_address in self._inboxes:
            raise InboxAlreadyExistsError(f"Inbox {descriptor.email_address} already exists")

        await self._api_client.get_sync_status(descriptor.email_address)
        return await self._register(descriptor)

    async def import_inbox_from_file(self, file_path: str | Path) -> Inbox:
        """Import an inbox from a JSON file.

        Args:
            file_path: Path to the import file.

        Returns:
            The imported Inbox instance.

        Raises:
            InvalidImportDataError: If the file cannot be read or is not an export.
        """
        self._ensure_open()
        path = Path(file_path)
        try:
            text = path.read_text()
        except OSError as e:
            raise InvalidImportDataError(f"Cannot read import file {path}: {e}") from e
        return await self.import_inbox(loads_exported_inbox(text))

    def _resolve(self, inbox_or_email: Inbox | str) -> Inbox:
        if isinstance(inbox_or_email, str):
            inbox = self._inboxes.get(inbox_or_email)
            if inbox is None:
                raise InboxNotFoundError(f"Inbox not found: {inbox_or_email}")
            return inbox
        return inbox_or_email

    def export_inbox(self, inbox_or_email: Inbox | str) -> ExportedInbox:
        """Export inbox data for persistence/sharing.

        WARNING: Exported data contains private keys. Handle securely.

        Args:
            inbox_or_email: The inbox to export, or its email address string.

        Raises:
            InboxNotFoundError: If the inbox is not found in the client.
        """
        self._ensure_open()
        return self._resolve(inbox_or_email).export()

    async def export_inbox_to_file(
        self, inbox_or_email: Inbox | str, file_path: str | Path
    ) -> None:
        """Export inbox data to a camelCase JSON file.

        WARNING: Exported data contains private keys. Handle securely.
        """
        exported = self.export_inbox(inbox_or_email)
        Path(file_path).write_text(dumps_exported_inbox(exported))

    def get_inbox(self, email_address: str) -> Inbox:
        """Look up a registered inbox.

        Raises:
            InboxNotFoundError: If the client holds no such inbox.
        """
        self._ensure_open()
        return self._resolve(email_address)

    async def delete_inbox(self, email_address: str) -> None:
        """Delete a specific inbox by email address.

        The inbox stops receiving and its subscriptions are closed.

        Args:
            email_address: The email address of the inbox to delete.
        """
        self._ensure_open()
        await self._api_client.delete_inbox(email_address)
        await self._forget(email_address)

    async def delete_all_inboxes(self) -> int:
        """Delete all inboxes for the API key.

        Warning:
            This deletes ALL inboxes for the API key, including those
            created by other clients.

        Returns:
            Number of inboxes deleted.
        """
        self._ensure_open()
        count = await self._api_client.delete_all_inboxes()
        for email_address in list(self._inboxes):
            await self._forget(email_address)
        return count

    def watch_inboxes(self, inboxes: Iterable[Inbox] | None = None) -> InboxWatcher:
        """Watch several inboxes through one merged event stream.

        Must be called from a running event loop.

        Args:
            inboxes: Inboxes to watch; defaults to every registered inbox.
        """
        self._ensure_open()
        watcher = InboxWatcher(self.inboxes if inboxes is None else inboxes)
        self._watchers.append(watcher)
        return watcher

    async def _register(self, descriptor: InboxDescriptor) -> Inbox:
        async with self._inbox_lock:
            self._ensure_open()
            strategy = self._strategy
            if strategy is None:
                raise StrategyError("No delivery strategy; open the client first")
            if descriptor.email_address in self._inboxes:
                raise InboxAlreadyExistsError(f"Inbox {descriptor.email_address} already exists")
            inbox = Inbox._from_descriptor(
                descriptor,
                self._api_client,
                self._sync_engine,
                on_delete=self._delete_inbox_object,
            )
            self._inboxes[inbox.email_address] = inbox
            await strategy.add(inbox)
        return inbox

    async def _forget(self, email_address: str) -> None:
        async with self._inbox_lock:
            inbox = self._inboxes.pop(email_address, None)
            if inbox is None:
                return
            if self._strategy is not None:
                await self._strategy.remove(inbox.inbox_hash)
            inbox._close()

    async def _delete_inbox_object(self, inbox: Inbox) -> None:
        await self.delete_inbox(inbox.email_address)
