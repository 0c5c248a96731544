"""Shared fixtures: real post-quantum payloads and an in-memory mail server."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pqcrypto.kem.ml_kem_768 import encrypt as mlkem_encapsulate
from pqcrypto.sign.ml_dsa_65 import generate_keypair as mldsa_generate_keypair
from pqcrypto.sign.ml_dsa_65 import sign as mldsa_sign

from sandboxmail.crypto import Keypair, generate_keypair, to_base64url
from sandboxmail.crypto.constants import (
    AES_GCM_NONCE_SIZE,
    EXPECTED_AEAD,
    EXPECTED_KDF,
    EXPECTED_KEM,
    EXPECTED_SIG,
    HKDF_CONTEXT,
)
from sandboxmail.crypto.keypair import derive_key
from sandboxmail.descriptor import InboxDescriptor
from sandboxmail.errors import EmailNotFoundError, InboxNotFoundError
from sandboxmail.inbox import Inbox
from sandboxmail.sync import SyncEngine, compute_emails_hash
from sandboxmail.types import EmailMetadata, SyncStatus
from sandboxmail.utils import format_timestamp, parse_iso_timestamp

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

ServerKeys = tuple[bytes, bytes]


def build_payload(
    plaintext: bytes,
    recipient_public_key: bytes,
    server_keys: ServerKeys,
    *,
    aad: bytes | None = None,
    truncate_ciphertext: bool = False,
) -> dict[str, Any]:
    """Encrypt and sign a payload exactly the way the server does.

    Args:
        plaintext: Bytes to encrypt.
        recipient_public_key: ML-KEM-768 public key of the inbox.
        server_keys: (public_key, secret_key) ML-DSA-65 signing keys.
        aad: Additional authenticated data; random when omitted.
        truncate_ciphertext: Drop the last ciphertext byte before signing,
            giving a payload that verifies but cannot be decrypted.
    """
    server_sig_pk, server_sig_sk = server_keys
    ct_kem, shared_secret = mlkem_encapsulate(recipient_public_key)
    ct_kem = bytes(ct_kem)
    nonce = os.urandom(AES_GCM_NONCE_SIZE)
    aad = os.urandom(32) if aad is None else aad

    aes_key = derive_key(bytes(shared_secret), ct_kem, aad)
    ciphertext = AESGCM(aes_key).encrypt(nonce, plaintext, aad)
    if truncate_ciphertext:
        ciphertext = ciphertext[:-1]

    algs = {"kem": EXPECTED_KEM, "sig": EXPECTED_SIG, "aead": EXPECTED_AEAD, "kdf": EXPECTED_KDF}
    transcript = (
        bytes([1])
        + f"{EXPECTED_KEM}:{EXPECTED_SIG}:{EXPECTED_AEAD}:{EXPECTED_KDF}".encode()
        + HKDF_CONTEXT.encode()
        + ct_kem
        + nonce
        + aad
        + ciphertext
        + server_sig_pk
    )
    signature = mldsa_sign(server_sig_sk, transcript)

    return {
        "v": 1,
        "algs": algs,
        "ct_kem": to_base64url(ct_kem),
        "nonce": to_base64url(nonce),
        "aad": to_base64url(aad),
        "ciphertext": to_base64url(ciphertext),
        "sig": to_base64url(bytes(signature)),
        "server_sig_pk": to_base64url(server_sig_pk),
    }


def _new_server_keys() -> ServerKeys:
    public_key, secret_key = mldsa_generate_keypair()
    return bytes(public_key), bytes(secret_key)


@pytest.fixture(scope="session")
def server_keys() -> ServerKeys:
    """ML-DSA-65 signing keys of the mail server."""
    return _new_server_keys()


@pytest.fixture(scope="session")
def other_server_keys() -> ServerKeys:
    """A second, unrelated signing keypair."""
    return _new_server_keys()


@pytest.fixture(scope="session")
def keypair() -> Keypair:
    """ML-KEM-768 keypair of the test inbox."""
    return generate_keypair()


@pytest.fixture
def seal(keypair: Keypair, server_keys: ServerKeys) -> Callable[..., dict[str, Any]]:
    """Build payloads for the test inbox signed by the server keys."""

    def _seal(plaintext: bytes, **kwargs: Any) -> dict[str, Any]:
        return build_payload(plaintext, keypair.public_key, server_keys, **kwargs)

    return _seal


@pytest.fixture
def descriptor(keypair: Keypair, server_keys: ServerKeys) -> InboxDescriptor:
    return InboxDescriptor(
        email_address="test@inbox.example.com",
        inbox_hash="inbox-hash-1",
        expires_at=BASE_TIME + timedelta(hours=1),
        keypair=keypair,
        server_sig_pk=server_keys[0],
    )


class FakeMailServer:
    """In-memory stand-in for ``ApiClient`` holding encrypted emails.

    Emails are sealed for one inbox keypair and signed with ``server_keys``;
    ``corrupt`` emails carry a broken signature.
    """

    def __init__(self, keypair: Keypair, server_keys: ServerKeys) -> None:
        self._keypair = keypair
        self._server_keys = server_keys
        self.emails: dict[str, dict[str, Any]] = {}
        self.get_email_calls: list[str] = []
        self.sync_status_calls = 0
        self.deleted_inboxes: list[str] = []
        self.missing_inboxes: set[str] = set()

    def add_email(
        self,
        email_id: str,
        *,
        subject: str = "hi",
        from_address: str = "a@x",
        text: str = "ok",
        received_offset: int | None = None,
        corrupt: bool = False,
    ) -> dict[str, Any]:
        offset = len(self.emails) if received_offset is None else received_offset
        received_at = format_timestamp(BASE_TIME + timedelta(seconds=offset))
        metadata = {
            "from": from_address,
            "to": ["test@inbox.example.com"],
            "subject": subject,
            "receivedAt": received_at,
        }
        parsed = {"text": text, "html": None, "headers": {}, "links": [], "attachments": []}

        encrypted_metadata = build_payload(
            json.dumps(metadata).encode(), self._keypair.public_key, self._server_keys
        )
        if corrupt:
            chars = bytearray(encrypted_metadata["ciphertext"].encode())
            chars[0] = ord("A") if chars[0] != ord("A") else ord("B")
            encrypted_metadata["ciphertext"] = chars.decode()

        response = {
            "id": email_id,
            "inboxId": "inbox-hash-1",
            "receivedAt": received_at,
            "isRead": False,
            "encryptedMetadata": encrypted_metadata,
            "encryptedParsed": build_payload(
                json.dumps(parsed).encode(), self._keypair.public_key, self._server_keys
            ),
        }
        self.emails[email_id] = response
        return response

    async def get_sync_status(self, email_address: str) -> SyncStatus:
        self.sync_status_calls += 1
        if email_address in self.missing_inboxes:
            raise InboxNotFoundError(f"Inbox not found: {email_address}")
        return SyncStatus(
            email_count=len(self.emails),
            emails_hash=compute_emails_hash(self.emails),
        )

    async def list_emails_metadata_only(self, email_address: str) -> list[EmailMetadata]:
        return [
            EmailMetadata(
                id=email["id"],
                received_at=parse_iso_timestamp(email["receivedAt"]),
                is_read=email["isRead"],
            )
            for email in self.emails.values()
        ]

    async def list_emails(
        self, email_address: str, include_content: bool = True
    ) -> list[dict[str, Any]]:
        return [dict(email) for email in self.emails.values()]

    async def get_email(self, email_address: str, email_id: str) -> dict[str, Any]:
        self.get_email_calls.append(email_id)
        if email_id not in self.emails:
            raise EmailNotFoundError(f"Email not found: {email_id}")
        return dict(self.emails[email_id])

    async def delete_inbox(self, email_address: str) -> None:
        self.deleted_inboxes.append(email_address)


@pytest.fixture
def mail_server(keypair: Keypair, server_keys: ServerKeys) -> FakeMailServer:
    return FakeMailServer(keypair, server_keys)


@pytest.fixture
def sync_engine(mail_server: FakeMailServer) -> SyncEngine:
    return SyncEngine(mail_server)  # type: ignore[arg-type]


@pytest.fixture
def inbox(
    descriptor: InboxDescriptor, mail_server: FakeMailServer, sync_engine: SyncEngine
) -> Inbox:
    return Inbox._from_descriptor(descriptor, mail_server, sync_engine)  # type: ignore[arg-type]
