"""Drift detection and catch-up for sandboxmail inboxes.

``SyncEngine`` compares the server's emails-hash with the one stored in an
inbox's ``SeenSet``; on divergence it lists metadata, fetches every message
it has not delivered yet (oldest first), verifies and decrypts it, marks it
seen and publishes it to the inbox fanout. All of this happens while the
inbox's sync lock is held, so each message is published at most once.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .crypto import to_base64url
from .email import Email
from .errors import EmailNotFoundError, SandboxMailError
from .types import SyncErrorCallback

logger = logging.getLogger("sandboxmail")

if TYPE_CHECKING:
    from .http import ApiClient
    from .inbox import Inbox


def compute_emails_hash(email_ids: Iterable[str]) -> str:
    """Hash a set of email IDs the way the server does.

    SHA-256 over the sorted IDs joined by ',', base64url without padding.
    """
    joined = ",".join(sorted(email_ids))
    return to_base64url(hashlib.sha256(joined.encode("utf-8")).digest())


@dataclass
class SeenSet:
    """Message IDs already delivered for one inbox, plus the last remote hash.

    Only ``SyncEngine`` mutates it, and only while holding ``lock``.
    """

    ids: set[str] = field(default_factory=set)
    emails_hash: str | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    sync_pending: bool = field(default=False, repr=False)

    def has_seen(self, email_id: str) -> bool:
        return email_id in self.ids

    def mark_seen(self, email_id: str) -> None:
        self.ids.add(email_id)

    def replace(self, email_ids: Iterable[str], emails_hash: str | None) -> None:
        self.ids = set(email_ids)
        self.emails_hash = emails_hash


class SyncEngine:
    """Bring an inbox's delivered set in line with the server.

    Args:
        api_client: Transport used for sync status, listings and fetches.
        on_sync_error: Optional ``callback(inbox, email_id, error)`` invoked,
            sync or async, for each message skipped because it failed.
    """

    def __init__(
        self,
        api_client: ApiClient,
        on_sync_error: SyncErrorCallback | None = None,
    ) -> None:
        self._api_client = api_client
        self._on_sync_error = on_sync_error

    async def sync(self, inbox: Inbox) -> list[Email]:
        """Run one drift check for an inbox.

        Concurrent calls collapse: while a sync is running, one more caller
        waits and re-checks the hash afterwards; any further callers return
        immediately with an empty list.

        Returns:
            Emails published by this call, in delivery order.

        Raises:
            SandboxMailError: If the sync status or metadata listing fails.
                The SeenSet is left unchanged.
        """
        seen = inbox._seen
        claimed = False
        if seen.lock.locked():
            if seen.sync_pending:
                logger.debug("Coalesced sync for %s", inbox.email_address)
                return []
            seen.sync_pending = claimed = True

        try:
            await seen.lock.acquire()
        except asyncio.CancelledError:
            # Hand the follow-up slot to the next caller.
            if claimed:
                seen.sync_pending = False
            raise
        try:
            seen.sync_pending = False
            return await self._sync_locked(inbox)
        finally:
            seen.lock.release()

    async def deliver(self, inbox: Inbox, email_id: str) -> Email | None:
        """Fetch, open and publish a single announced message.

        Used for push notifications: no status or listing round trip. The
        stored hash is left alone so the next drift check still runs the
        set difference and finds nothing new.

        Returns:
            The published email, or None if it was already delivered or failed.
        """
        seen = inbox._seen
        async with seen.lock:
            if seen.has_seen(email_id):
                return None
            email = await self._fetch(inbox, email_id)
            if email is None:
                return None
            self._publish(inbox, email)
            return email

    async def _sync_locked(self, inbox: Inbox) -> list[Email]:
        seen = inbox._seen
        address = inbox.email_address

        status = await self._api_client.get_sync_status(address)
        if status.emails_hash == seen.emails_hash:
            return []

        entries = await self._api_client.list_emails_metadata_only(address)
        remote_ids = {entry.id for entry in entries}
        missing = sorted(
            (entry for entry in entries if not seen.has_seen(entry.id)),
            key=lambda entry: entry.received_at,
        )

        delivered: list[Email] = []
        failed: set[str] = set()
        for entry in missing:
            try:
                email = await self._fetch(inbox, entry.id, raise_not_found=True)
            except EmailNotFoundError:
                logger.debug("Email %s vanished from %s during sync", entry.id, address)
                remote_ids.discard(entry.id)
                continue
            if email is None:
                failed.add(entry.id)
                continue
            self._publish(inbox, email)
            delivered.append(email)

        kept = remote_ids - failed
        if failed:
            # Hash of what is actually held, so the next check retries the failures.
            seen.replace(kept, compute_emails_hash(kept))
        else:
            seen.replace(kept, status.emails_hash)
        return delivered

    async def _fetch(
        self,
        inbox: Inbox,
        email_id: str,
        *,
        raise_not_found: bool = False,
    ) -> Email | None:
        try:
            response = await self._api_client.get_email(inbox.email_address, email_id)
            return Email._from_response(response, inbox)
        except EmailNotFoundError as e:
            if raise_not_found:
                raise
            await self._report(inbox, email_id, e)
        except SandboxMailError as e:
            await self._report(inbox, email_id, e)
        return None

    def _publish(self, inbox: Inbox, email: Email) -> None:
        inbox._seen.mark_seen(email.id)
        inbox._fanout.publish(email)

    async def _report(self, inbox: Inbox, email_id: str, error: SandboxMailError) -> None:
        logger.warning(
            "Skipping email %s in %s: %s", email_id, inbox.email_address, error, exc_info=error
        )
        if self._on_sync_error is None:
            return
        try:
            result = self._on_sync_error(inbox, email_id, error)
            if inspect.isawaitable(result):
                await result
        except Exception as callback_error:
            logger.warning("Error in sync error callback: %s", callback_error, exc_info=True)
