"""Blocking waits for matching emails on top of an inbox fanout."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .constants import DEFAULT_WAIT_TIMEOUT_MS
from .errors import ClientClosedError, TimeoutError, WaitCancelledError
from .fanout import ChannelClosed, Subscription
from .types import WaitForEmailOptions
from .utils import matches_filter

logger = logging.getLogger("sandboxmail")

if TYPE_CHECKING:
    from .email import Email
    from .inbox import Inbox

EmailMatcher = Callable[["Email"], bool]


def matcher_from_options(options: WaitForEmailOptions) -> EmailMatcher:
    """Combine the subject, sender and predicate filters of ``options``."""

    def matcher(email: Email) -> bool:
        return matches_filter(email, options)

    return matcher


def _match_all(email: Email) -> bool:
    return True


async def wait_first(
    inbox: Inbox,
    matcher: EmailMatcher | None = None,
    timeout: int = DEFAULT_WAIT_TIMEOUT_MS,
    *,
    cancel: asyncio.Event | None = None,
) -> Email:
    """Wait for the first email in ``inbox`` accepted by ``matcher``.

    Emails already in the inbox are considered before new arrivals.

    Args:
        inbox: The inbox to watch.
        matcher: Predicate over an Email; None accepts any email.
        timeout: Max wait time in milliseconds.
        cancel: Optional event; setting it aborts the wait.

    Raises:
        TimeoutError: If nothing matches within the timeout.
        WaitCancelledError: If ``cancel`` is set first.
    """
    emails = await wait_n(inbox, 1, matcher, timeout, cancel=cancel)
    return emails[0]


async def wait_n(
    inbox: Inbox,
    count: int,
    matcher: EmailMatcher | None = None,
    timeout: int = DEFAULT_WAIT_TIMEOUT_MS,
    *,
    cancel: asyncio.Event | None = None,
) -> list[Email]:
    """Wait until ``count`` distinct emails accepted by ``matcher`` are seen.

    The fanout subscription is taken before the inbox is scanned, so an
    email arriving during the scan is not missed; one seen both ways
    counts once. The subscription is released on every exit path.

    Returns:
        The matching emails, existing ones first in receive order.

    Raises:
        ValueError: If ``count`` is less than 1.
        TimeoutError: If fewer than ``count`` match within the timeout.
        WaitCancelledError: If ``cancel`` is set first.
        ClientClosedError: If the inbox is closed while waiting.
    """
    if count < 1:
        raise ValueError("count must be at least 1")

    subscription = inbox.watch()
    collector = asyncio.ensure_future(
        _collect(inbox, subscription, count, matcher or _match_all)
    )
    cancel_waiter = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    waiting = {collector} if cancel_waiter is None else {collector, cancel_waiter}

    try:
        done, _ = await asyncio.wait(
            waiting, timeout=timeout / 1000, return_when=asyncio.FIRST_COMPLETED
        )
        if collector in done:
            try:
                return collector.result()
            except ChannelClosed:
                raise ClientClosedError(
                    f"Inbox {inbox.email_address} was closed while waiting"
                ) from None
        if cancel_waiter is not None and cancel_waiter in done:
            raise WaitCancelledError(f"Wait on {inbox.email_address} was cancelled")
        raise TimeoutError(f"Timeout waiting for email after {timeout}ms")
    finally:
        pending = [task for task in waiting if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        subscription.cancel()


async def _collect(
    inbox: Inbox,
    subscription: Subscription[Email],
    count: int,
    matcher: EmailMatcher,
) -> list[Email]:
    matched: dict[str, Email] = {}

    def offer(email: Email) -> bool:
        if email.id not in matched and matcher(email):
            matched[email.id] = email
        return len(matched) >= count

    await inbox.sync()
    existing = await inbox.list_emails(skip_undecryptable=True)
    for email in sorted(existing, key=lambda e: e.received_at):
        if offer(email):
            return list(matched.values())

    while True:
        email = await subscription.get()
        if offer(email):
            return list(matched.values())
