"""Inbox class for sandboxmail."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .crypto import open_raw, to_base64url
from .descriptor import InboxDescriptor
from .email import Email
from .errors import ClientClosedError, SandboxMailError
from .fanout import Fanout, Subscription
from .sync import SeenSet
from .types import (
    EmailCallback,
    EmailMetadata,
    ExportedInbox,
    RawEmail,
    SyncStatus,
    WaitForEmailOptions,
)
from .waiter import matcher_from_options, wait_first, wait_n

logger = logging.getLogger("sandboxmail")

if TYPE_CHECKING:
    from .http import ApiClient
    from .sync import SyncEngine


@dataclass
class Inbox:
    """Represents a sandboxmail inbox.

    Attributes:
        email_address: The email address assigned to the inbox.
        expires_at: Timestamp when the inbox will expire.
        inbox_hash: Opaque server identifier of the inbox.
        server_sig_pk: Pinned server signing public key (base64url).
    """

    email_address: str
    expires_at: datetime
    inbox_hash: str
    server_sig_pk: str
    _descriptor: InboxDescriptor = field(repr=False)
    _api_client: ApiClient = field(repr=False)
    _sync_engine: SyncEngine = field(repr=False)
    _on_delete: Callable[[Inbox], Awaitable[None]] | None = field(default=None, repr=False)
    _seen: SeenSet = field(default_factory=SeenSet, repr=False)
    _fanout: Fanout[Email] = field(default_factory=Fanout, repr=False)
    _callback_tasks: dict[Subscription[Email], asyncio.Task[None]] = field(
        default_factory=dict, repr=False
    )
    _closed: bool = field(default=False, repr=False)

    @classmethod
    def _from_descriptor(
        cls,
        descriptor: InboxDescriptor,
        api_client: ApiClient,
        sync_engine: SyncEngine,
        on_delete: Callable[[Inbox], Awaitable[None]] | None = None,
    ) -> Inbox:
        return cls(
            email_address=descriptor.email_address,
            expires_at=descriptor.expires_at,
            inbox_hash=descriptor.inbox_hash,
            server_sig_pk=to_base64url(descriptor.server_sig_pk),
            _descriptor=descriptor,
            _api_client=api_client,
            _sync_engine=sync_engine,
            _on_delete=on_delete,
        )

    @property
    def descriptor(self) -> InboxDescriptor:
        return self._descriptor

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClientClosedError(f"Inbox {self.email_address} is closed")

    async def list_emails(self, *, skip_undecryptable: bool = False) -> list[Email]:
        """List all emails in the inbox.

        Args:
            skip_undecryptable: Log and leave out emails that fail
                verification or decryption instead of raising.

        Returns:
            List of Email objects.
        """
        self._ensure_open()
        list_responses = await self._api_client.list_emails(self.email_address)
        emails = []
        for email_data in list_responses:
            # Listings may omit the parsed body; fetch it on demand
            if not email_data.get("encryptedParsed"):
                email_data = await self._api_client.get_email(self.email_address, email_data["id"])
            try:
                emails.append(Email._from_response(email_data, self))
            except SandboxMailError as e:
                if not skip_undecryptable:
                    raise
                logger.warning(
                    "Skipping email %s in %s: %s",
                    email_data.get("id"),
                    self.email_address,
                    e,
                    exc_info=True,
                )
        return emails

    async def list_emails_metadata_only(self) -> list[EmailMetadata]:
        """List IDs, receive times and read flags without decrypting anything."""
        self._ensure_open()
        return await self._api_client.list_emails_metadata_only(self.email_address)

    async def get_email(self, email_id: str) -> Email:
        """Get a specific email by ID.

        Args:
            email_id: The email ID.

        Returns:
            The Email object.
        """
        self._ensure_open()
        response = await self._api_client.get_email(self.email_address, email_id)
        return Email._from_response(response, self)

    async def get_raw_email(self, email_id: str) -> RawEmail:
        """Get the raw MIME source of an email.

        Args:
            email_id: The email ID.

        Returns:
            RawEmail object with id and raw MIME content.
        """
        self._ensure_open()
        raw_response = await self._api_client.get_raw_email(self.email_address, email_id)
        raw = open_raw(
            raw_response["encryptedRaw"],
            self._descriptor.server_sig_pk,
            self._descriptor.keypair,
        )
        return RawEmail(id=raw_response["id"], raw=raw)

    async def mark_email_as_read(self, email_id: str) -> None:
        self._ensure_open()
        await self._api_client.mark_email_as_read(self.email_address, email_id)

    async def delete_email(self, email_id: str) -> None:
        self._ensure_open()
        await self._api_client.delete_email(self.email_address, email_id)

    async def delete(self) -> None:
        """Delete this inbox on the server and stop delivering for it."""
        self._ensure_open()
        if self._on_delete is not None:
            await self._on_delete(self)
            return
        await self._api_client.delete_inbox(self.email_address)
        self._close()

    async def get_sync_status(self) -> SyncStatus:
        """Get inbox sync status.

        Returns:
            SyncStatus with email count and hash.
        """
        self._ensure_open()
        return await self._api_client.get_sync_status(self.email_address)

    async def sync(self) -> list[Email]:
        """Run a drift check now and publish anything new.

        Returns:
            Emails published by this check.
        """
        self._ensure_open()
        return await self._sync_engine.sync(self)

    def watch(self) -> Subscription[Email]:
        """Subscribe to emails delivered to this inbox from now on.

        Iterate the subscription with ``async for``; call ``cancel()`` (or
        use it as an async context manager) to stop. A subscriber that
        falls 16 emails behind misses the overflow.
        """
        self._ensure_open()
        return self._fanout.subscribe()

    async def on_new_email(self, callback: EmailCallback) -> Subscription[Email]:
        """Invoke ``callback`` (sync or async) for every newly delivered email.

        Returns:
            The underlying subscription; pass it to ``unsubscribe`` to stop.
        """
        subscription = self.watch()
        task = asyncio.create_task(self._drain(subscription, callback))
        self._callback_tasks[subscription] = task
        task.add_done_callback(lambda _: self._callback_tasks.pop(subscription, None))
        return subscription

    async def unsubscribe(self, subscription: Subscription[Email]) -> None:
        """Stop a subscription returned by ``on_new_email`` or ``watch``."""
        subscription.cancel()
        task = self._callback_tasks.pop(subscription, None)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _drain(self, subscription: Subscription[Email], callback: EmailCallback) -> None:
        async for email in subscription:
            try:
                result: Any = callback(email)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("Error in email callback for %s: %s", email.id, e, exc_info=True)

    async def wait_for_email(
        self,
        options: WaitForEmailOptions | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> Email:
        """Wait for an email matching the filter options.

        Args:
            options: Filter options for matching emails.
            cancel: Optional event; setting it aborts the wait.

        Returns:
            The first Email matching the filter.

        Raises:
            TimeoutError: If no matching email arrives within the timeout.
            WaitCancelledError: If ``cancel`` is set first.
        """
        self._ensure_open()
        options = options or WaitForEmailOptions()
        return await wait_first(
            self, matcher_from_options(options), options.timeout, cancel=cancel
        )

    async def wait_for_email_count(
        self,
        count: int,
        options: WaitForEmailOptions | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[Email]:
        """Wait until ``count`` distinct emails match the filter options.

        Raises:
            TimeoutError: If fewer emails match within the timeout.
            WaitCancelledError: If ``cancel`` is set first.
        """
        self._ensure_open()
        options = options or WaitForEmailOptions()
        return await wait_n(
            self, count, matcher_from_options(options), options.timeout, cancel=cancel
        )

    def export(self) -> ExportedInbox:
        """Export inbox data for persistence/sharing.

        WARNING: Exported data contains private keys. Handle securely.
        """
        self._ensure_open()
        return self._descriptor.export()

    def _close(self) -> None:
        """Close the fanout; callback tasks end once their channels drain."""
        self._closed = True
        self._fanout.close()
