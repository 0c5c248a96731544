"""Tests for SandboxMailClient."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from sandboxmail import SandboxMailClient
from sandboxmail.client import InboxEvent
from sandboxmail.crypto import generate_keypair, to_base64url
from sandboxmail.descriptor import InboxDescriptor, exported_inbox_to_dict
from sandboxmail.errors import (
    ClientClosedError,
    ErrorKind,
    InboxAlreadyExistsError,
    InboxNotFoundError,
    InvalidImportDataError,
    InvalidSizeError,
    InvalidTTLError,
    MissingCredentialsError,
    StrategyError,
    UnauthorizedError,
)
from sandboxmail.fanout import ChannelClosed
from sandboxmail.types import CreateInboxOptions, InboxData, ServerInfo

from conftest import FakeMailServer, ServerKeys

ClientFactory = Callable[..., SandboxMailClient]


@pytest.fixture
def api(mail_server: FakeMailServer, server_keys: ServerKeys) -> FakeMailServer:
    """The fake server extended with the endpoints the client uses directly."""
    mail_server.check_key = AsyncMock(return_value=True)  # type: ignore[attr-defined]
    mail_server.get_server_info = AsyncMock(  # type: ignore[attr-defined]
        return_value=ServerInfo(
            server_sig_pk=to_base64url(server_keys[0]),
            algs={},
            context="vaultsandbox:email:v1",
            max_ttl=3600,
            default_ttl=600,
            supports_push=False,
        )
    )
    mail_server.create_inbox = AsyncMock(  # type: ignore[attr-defined]
        return_value=InboxData(
            email_address="new@inbox.example.com",
            expires_at="2024-01-01T01:00:00Z",
            inbox_hash="new-hash",
            server_sig_pk=to_base64url(server_keys[0]),
        )
    )
    mail_server.delete_all_inboxes = AsyncMock(return_value=2)  # type: ignore[attr-defined]
    mail_server.close = AsyncMock()  # type: ignore[attr-defined]
    return mail_server


@pytest.fixture
def make_client(api: FakeMailServer) -> ClientFactory:
    def _make(**kwargs: Any) -> SandboxMailClient:
        kwargs.setdefault("polling_interval", 60_000)
        with patch("sandboxmail.client.ApiClient", return_value=api):
            return SandboxMailClient("test-key", **kwargs)

    return _make


class TestClientInit:
    def test_missing_api_key(self) -> None:
        with pytest.raises(MissingCredentialsError) as exc_info:
            SandboxMailClient("")
        assert exc_info.value.kind is ErrorKind.MISSING_CREDENTIALS

    @pytest.mark.asyncio
    async def test_auto_strategy_follows_server(self, make_client: ClientFactory) -> None:
        client = make_client()
        assert client.strategy_name is None

        async with client:
            assert client.strategy_name == "polling"

    @pytest.mark.asyncio
    async def test_rejected_key(self, make_client: ClientFactory, api: FakeMailServer) -> None:
        api.check_key.return_value = False  # type: ignore[attr-defined]
        client = make_client(check_key=True)

        with pytest.raises(UnauthorizedError):
            await client.open()
        api.get_server_info.assert_not_called()  # type: ignore[attr-defined]
        await client.close()

    @pytest.mark.asyncio
    async def test_server_info_fetched_once(
        self, make_client: ClientFactory, api: FakeMailServer
    ) -> None:
        async with make_client() as client:
            await asyncio.gather(client.get_server_info(), client.get_server_info())
        api.get_server_info.assert_awaited_once()  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_register_requires_strategy(
        self, make_client: ClientFactory, descriptor: InboxDescriptor
    ) -> None:
        client = make_client()

        with pytest.raises(StrategyError, match="open the client first"):
            await client._register(descriptor)
        assert client.inboxes == []
        await client.close()


class TestCreateInbox:
    @pytest.mark.asyncio
    async def test_create_inbox(self, make_client: ClientFactory, api: FakeMailServer) -> None:
        async with make_client() as client:
            inbox = await client.create_inbox(CreateInboxOptions(ttl=600))

            assert inbox.email_address == "new@inbox.example.com"
            assert client.get_inbox("new@inbox.example.com") is inbox
            assert client.inboxes == [inbox]
            call = api.create_inbox.call_args  # type: ignore[attr-defined]
            assert call.args == (inbox.descriptor.keypair.public_key_b64,)
            assert call.kwargs == {"ttl": 600, "email_address": None}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [59, 3601])
    async def test_ttl_out_of_range(
        self, make_client: ClientFactory, api: FakeMailServer, ttl: int
    ) -> None:
        async with make_client() as client:
            with pytest.raises(InvalidTTLError):
                await client.create_inbox(CreateInboxOptions(ttl=ttl))
        api.create_inbox.assert_not_called()  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_bad_server_key(self, make_client: ClientFactory, api: FakeMailServer) -> None:
        api.create_inbox.return_value = InboxData(  # type: ignore[attr-defined]
            email_address="new@inbox.example.com",
            expires_at="2024-01-01T01:00:00Z",
            inbox_hash="new-hash",
            server_sig_pk=to_base64url(b"short"),
        )
        async with make_client() as client:
            with pytest.raises(InvalidSizeError):
                await client.create_inbox()
            assert client.inboxes == []


class TestImportExport:
    @pytest.mark.asyncio
    async def test_import_exported_inbox(
        self, make_client: ClientFactory, api: FakeMailServer, descriptor: InboxDescriptor
    ) -> None:
        async with make_client() as client:
            inbox = await client.import_inbox(descriptor.export())

            assert inbox.descriptor == descriptor
            assert api.sync_status_calls >= 1
            assert client.export_inbox("test@inbox.example.com").secret_key_b64 == (
                descriptor.export().secret_key_b64
            )

            api.add_email("A", subject="After import")
            email = await inbox.get_email("A")
            assert email.subject == "After import"
            assert email.inbox is inbox

    @pytest.mark.asyncio
    async def test_import_from_camel_case_dict(
        self, make_client: ClientFactory, descriptor: InboxDescriptor
    ) -> None:
        async with make_client() as client:
            inbox = await client.import_inbox(exported_inbox_to_dict(descriptor.export()))
            assert inbox.inbox_hash == "inbox-hash-1"

    @pytest.mark.asyncio
    async def test_import_twice(
        self, make_client: ClientFactory, descriptor: InboxDescriptor
    ) -> None:
        async with make_client() as client:
            await client.import_inbox(descriptor.export())
            with pytest.raises(InboxAlreadyExistsError):
                await client.import_inbox(descriptor.export())

    @pytest.mark.asyncio
    async def test_import_inbox_gone_on_server(
        self, make_client: ClientFactory, api: FakeMailServer, descriptor: InboxDescriptor
    ) -> None:
        api.missing_inboxes.add(descriptor.email_address)
        async with make_client() as client:
            with pytest.raises(InboxNotFoundError):
                await client.import_inbox(descriptor.export())
            assert client.inboxes == []

    @pytest.mark.asyncio
    async def test_import_rejects_invalid_blob(
        self, make_client: ClientFactory, descriptor: InboxDescriptor
    ) -> None:
        data = exported_inbox_to_dict(descriptor.export())
        data["publicKeyB64"] = generate_keypair().public_key_b64
        async with make_client() as client:
            with pytest.raises(InvalidImportDataError):
                await client.import_inbox(data)

    @pytest.mark.asyncio
    async def test_file_round_trip(
        self, make_client: ClientFactory, descriptor: InboxDescriptor, tmp_path: Path
    ) -> None:
        path = tmp_path / "inbox.json"
        async with make_client() as client:
            inbox = await client.import_inbox(descriptor.export())
            await client.export_inbox_to_file(inbox, path)

        async with make_client() as client:
            restored = await client.import_inbox_from_file(path)
            assert restored.descriptor == descriptor

    @pytest.mark.asyncio
    async def test_import_missing_file(self, make_client: ClientFactory, tmp_path: Path) -> None:
        async with make_client() as client:
            with pytest.raises(InvalidImportDataError, match="Cannot read import file"):
                await client.import_inbox_from_file(tmp_path / "missing.json")

    @pytest.mark.asyncio
    async def test_export_unknown_inbox(self, make_client: ClientFactory) -> None:
        async with make_client() as client:
            with pytest.raises(InboxNotFoundError):
                client.export_inbox("nobody@inbox.example.com")


class TestDeleteInbox:
    @pytest.mark.asyncio
    async def test_delete_inbox_closes_subscriptions(
        self, make_client: ClientFactory, api: FakeMailServer, descriptor: InboxDescriptor
    ) -> None:
        async with make_client() as client:
            inbox = await client.import_inbox(descriptor.export())
            subscription = inbox.watch()

            await client.delete_inbox(inbox.email_address)

            assert api.deleted_inboxes == [inbox.email_address]
            assert subscription.closed
            assert inbox.closed
            with pytest.raises(InboxNotFoundError):
                client.get_inbox(inbox.email_address)

    @pytest.mark.asyncio
    async def test_inbox_delete_goes_through_client(
        self, make_client: ClientFactory, api: FakeMailServer, descriptor: InboxDescriptor
    ) -> None:
        async with make_client() as client:
            inbox = await client.import_inbox(descriptor.export())
            await inbox.delete()

            assert api.deleted_inboxes == [inbox.email_address]
            assert client.inboxes == []

    @pytest.mark.asyncio
    async def test_delete_all_inboxes(
        self, make_client: ClientFactory, descriptor: InboxDescriptor
    ) -> None:
        async with make_client() as client:
            inbox = await client.import_inbox(descriptor.export())

            assert await client.delete_all_inboxes() == 2
            assert client.inboxes == []
            assert inbox.closed


class TestWatchInboxes:
    @pytest.mark.asyncio
    async def test_merged_events(
        self, make_client: ClientFactory, api: FakeMailServer, descriptor: InboxDescriptor
    ) -> None:
        async with make_client() as client:
            inbox = await client.import_inbox(descriptor.export())
            await inbox.sync()

            async with client.watch_inboxes() as watcher:
                api.add_email("A")
                await inbox.sync()
                event = await asyncio.wait_for(watcher.get(), 1)

            assert isinstance(event, InboxEvent)
            assert event.inbox is inbox
            assert event.email.id == "A"
            assert watcher.closed

    @pytest.mark.asyncio
    async def test_watcher_without_inboxes_is_closed(self, make_client: ClientFactory) -> None:
        async with make_client() as client:
            watcher = client.watch_inboxes([])
            assert watcher.closed
            with pytest.raises(ChannelClosed):
                await watcher.get()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_releases_everything(
        self, make_client: ClientFactory, api: FakeMailServer, descriptor: InboxDescriptor
    ) -> None:
        client = make_client()
        inbox = await client.import_inbox(descriptor.export())
        subscription = inbox.watch()
        watcher = client.watch_inboxes()

        await client.close()
        await client.close()

        assert client.closed
        assert subscription.closed
        assert watcher.closed
        assert inbox.closed
        assert client.inboxes == []
        api.close.assert_awaited_once()  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_operations_after_close(
        self, make_client: ClientFactory, descriptor: InboxDescriptor
    ) -> None:
        client = make_client()
        inbox = await client.import_inbox(descriptor.export())
        await client.close()

        with pytest.raises(ClientClosedError):
            await client.create_inbox()
        with pytest.raises(ClientClosedError):
            await client.import_inbox(descriptor.export())
        with pytest.raises(ClientClosedError):
            client.watch_inboxes()
        with pytest.raises(ClientClosedError):
            inbox.watch()
        with pytest.raises(ClientClosedError):
            await inbox.wait_for_email()
