"""Tests for waiting on matching emails."""

from __future__ import annotations

import asyncio
import re
import time

import pytest

from sandboxmail.errors import ClientClosedError, TimeoutError, WaitCancelledError
from sandboxmail.inbox import Inbox
from sandboxmail.types import WaitForEmailOptions
from sandboxmail.waiter import matcher_from_options, wait_first, wait_n

from conftest import FakeMailServer


async def deliver_later(inbox: Inbox, mail_server: FakeMailServer, email_id: str, **kwargs) -> None:
    await asyncio.sleep(0.02)
    mail_server.add_email(email_id, **kwargs)
    await inbox.sync()


class TestWaitFirst:
    @pytest.mark.asyncio
    async def test_existing_match_returns_immediately(
        self, inbox: Inbox, mail_server: FakeMailServer
    ) -> None:
        mail_server.add_email("A", subject="Welcome")
        mail_server.add_email("B", subject="Reset")
        matcher = matcher_from_options(WaitForEmailOptions(subject="Reset"))

        started = time.monotonic()
        email = await wait_first(inbox, matcher, timeout=5000)

        assert time.monotonic() - started < 0.2
        assert email.id == "B"
        assert inbox._fanout.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_times_out(self, inbox: Inbox) -> None:
        started = time.monotonic()
        with pytest.raises(TimeoutError, match="after 100ms"):
            await wait_first(inbox, lambda email: False, timeout=100)
        elapsed = time.monotonic() - started

        assert 0.1 <= elapsed <= 0.5
        assert inbox._fanout.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_new_arrival_matches(self, inbox: Inbox, mail_server: FakeMailServer) -> None:
        mail_server.add_email("old", subject="Other")
        arrival = asyncio.create_task(
            deliver_later(inbox, mail_server, "new", subject="Code 1234")
        )

        email = await wait_first(
            inbox, lambda e: e.subject.startswith("Code"), timeout=2000
        )
        await arrival

        assert email.id == "new"
        assert email.subject == "Code 1234"

    @pytest.mark.asyncio
    async def test_cancel_event(self, inbox: Inbox) -> None:
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, cancel.set)

        with pytest.raises(WaitCancelledError):
            await wait_first(inbox, timeout=5000, cancel=cancel)
        assert inbox._fanout.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, inbox: Inbox) -> None:
        waiter = asyncio.create_task(wait_first(inbox, timeout=5000))
        await asyncio.sleep(0.02)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert inbox._fanout.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_inbox_closed_while_waiting(self, inbox: Inbox) -> None:
        waiter = asyncio.create_task(wait_first(inbox, timeout=5000))
        await asyncio.sleep(0.02)
        inbox._close()

        with pytest.raises(ClientClosedError):
            await waiter


class TestWaitN:
    @pytest.mark.asyncio
    async def test_counts_existing_and_new_once(
        self, inbox: Inbox, mail_server: FakeMailServer
    ) -> None:
        mail_server.add_email("A")
        arrival = asyncio.create_task(deliver_later(inbox, mail_server, "B"))

        emails = await wait_n(inbox, 2, timeout=2000)
        await arrival

        assert [email.id for email in emails] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_rejects_non_positive_count(self, inbox: Inbox) -> None:
        with pytest.raises(ValueError):
            await wait_n(inbox, 0)

    @pytest.mark.asyncio
    async def test_partial_match_times_out(
        self, inbox: Inbox, mail_server: FakeMailServer
    ) -> None:
        mail_server.add_email("A")
        with pytest.raises(TimeoutError):
            await wait_n(inbox, 2, timeout=100)


class TestInboxWaits:
    @pytest.mark.asyncio
    async def test_wait_for_email_with_options(
        self, inbox: Inbox, mail_server: FakeMailServer
    ) -> None:
        mail_server.add_email("A", from_address="noreply@shop.test")
        mail_server.add_email("B", from_address="alerts@bank.test")

        email = await inbox.wait_for_email(
            WaitForEmailOptions(from_address="alerts@bank.test", timeout=2000)
        )
        assert email.id == "B"
        assert email.from_address == "alerts@bank.test"

    @pytest.mark.asyncio
    async def test_wait_for_email_count(self, inbox: Inbox, mail_server: FakeMailServer) -> None:
        mail_server.add_email("A", subject="Order shipped")
        mail_server.add_email("B", subject="Newsletter")
        mail_server.add_email("C", subject="Order delivered")

        emails = await inbox.wait_for_email_count(
            2, WaitForEmailOptions(subject=re.compile(r"^Order"), timeout=2000)
        )
        assert [email.id for email in emails] == ["A", "C"]

    @pytest.mark.asyncio
    async def test_predicate(self, inbox: Inbox, mail_server: FakeMailServer) -> None:
        mail_server.add_email("A", text="nothing here")
        mail_server.add_email("B", text="your code is 42")

        email = await inbox.wait_for_email(
            WaitForEmailOptions(predicate=lambda e: "code" in (e.text or ""), timeout=2000)
        )
        assert email.id == "B"

    @pytest.mark.asyncio
    async def test_skips_undecryptable_existing_emails(
        self, inbox: Inbox, mail_server: FakeMailServer
    ) -> None:
        mail_server.add_email("bad", corrupt=True)
        mail_server.add_email("good")

        email = await inbox.wait_for_email(WaitForEmailOptions(timeout=2000))
        assert email.id == "good"
