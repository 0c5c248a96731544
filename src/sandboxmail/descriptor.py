"""Inbox descriptors and their export format for sandboxmail."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .crypto import (
    Keypair,
    derive_public_key_from_secret,
    from_base64url,
    to_base64url,
)
from .crypto.constants import (
    EXPORT_VERSION,
    MLDSA65_PUBLIC_KEY_SIZE,
    MLKEM768_PUBLIC_KEY_SIZE,
    MLKEM768_SECRET_KEY_SIZE,
)
from .errors import Base64URLDecodeError, InvalidImportDataError, UnsupportedVersionError
from .types import ExportedInbox
from .utils import format_timestamp, parse_iso_timestamp, utc_now


@dataclass(frozen=True)
class InboxDescriptor:
    """Immutable identity of an inbox.

    Attributes:
        email_address: The email address assigned to the inbox.
        inbox_hash: Opaque server identifier, the routing key on the event stream.
        expires_at: When the inbox expires.
        keypair: The inbox ML-KEM-768 keypair.
        server_sig_pk: Server signing key pinned at creation or import.
        version: Export schema version.
    """

    email_address: str
    inbox_hash: str
    expires_at: datetime
    keypair: Keypair = field(repr=False)
    server_sig_pk: bytes = field(repr=False)
    version: int = EXPORT_VERSION

    def export(self) -> ExportedInbox:
        """Serialize the descriptor.

        WARNING: Exported data contains private keys. Handle securely.
        """
        return ExportedInbox(
            version=self.version,
            email_address=self.email_address,
            expires_at=format_timestamp(self.expires_at),
            inbox_hash=self.inbox_hash,
            server_sig_pk=to_base64url(self.server_sig_pk),
            public_key_b64=self.keypair.public_key_b64,
            secret_key_b64=to_base64url(self.keypair.secret_key),
            exported_at=format_timestamp(utc_now()),
        )

    @classmethod
    def from_export(cls, data: ExportedInbox) -> InboxDescriptor:
        """Validate an exported blob and rebuild the descriptor.

        Validation steps (in order):
        1. version == 1
        2. required fields present
        3. emailAddress contains exactly one '@'
        4. secret key decodes to 2400 bytes; public key, when present,
           decodes to 1184 bytes and equals the one embedded in the secret key
        5. serverSigPk decodes to 1952 bytes
        6. timestamps parse

        Raises:
            UnsupportedVersionError: If the version is not 1.
            InvalidImportDataError: For any other validation failure.
        """
        if data.version != EXPORT_VERSION:
            raise UnsupportedVersionError(
                f"Unsupported export version: {data.version}, expected {EXPORT_VERSION}"
            )

        if not data.email_address:
            raise InvalidImportDataError("Missing emailAddress")
        if not data.expires_at:
            raise InvalidImportDataError("Missing expiresAt")
        if not data.inbox_hash:
            raise InvalidImportDataError("Missing inboxHash")
        if not data.server_sig_pk:
            raise InvalidImportDataError("Missing serverSigPk")
        if not data.secret_key_b64:
            raise InvalidImportDataError("Missing secretKeyB64")

        at_count = data.email_address.count("@")
        if at_count != 1:
            raise InvalidImportDataError(
                f"Invalid emailAddress: must contain exactly one '@', found {at_count}"
            )

        secret_key = _decode_key(data.secret_key_b64, "secretKeyB64", MLKEM768_SECRET_KEY_SIZE)
        public_key = derive_public_key_from_secret(secret_key)
        if data.public_key_b64:
            given = _decode_key(data.public_key_b64, "publicKeyB64", MLKEM768_PUBLIC_KEY_SIZE)
            if given != public_key:
                raise InvalidImportDataError("publicKeyB64 does not match the secret key")
        keypair = Keypair(public_key=public_key, secret_key=secret_key)

        server_sig_pk = _decode_key(data.server_sig_pk, "serverSigPk", MLDSA65_PUBLIC_KEY_SIZE)

        try:
            expires_at = parse_iso_timestamp(data.expires_at)
        except ValueError as e:
            raise InvalidImportDataError(f"Invalid expiresAt format: {e}") from e
        if data.exported_at:
            try:
                parse_iso_timestamp(data.exported_at)
            except ValueError as e:
                raise InvalidImportDataError(f"Invalid exportedAt format: {e}") from e

        return cls(
            email_address=data.email_address,
            inbox_hash=data.inbox_hash,
            expires_at=expires_at,
            keypair=keypair,
            server_sig_pk=server_sig_pk,
            version=data.version,
        )


def _decode_key(value: str, name: str, size: int) -> bytes:
    try:
        decoded = from_base64url(value)
    except Base64URLDecodeError as e:
        raise InvalidImportDataError(f"Invalid {name} encoding: {e}") from e
    if len(decoded) != size:
        raise InvalidImportDataError(
            f"Invalid {name} length: {len(decoded)} bytes, expected {size}"
        )
    return decoded


def exported_inbox_to_dict(exported: ExportedInbox) -> dict[str, Any]:
    """Convert an export to its camelCase JSON form."""
    return {
        "version": exported.version,
        "emailAddress": exported.email_address,
        "expiresAt": exported.expires_at,
        "inboxHash": exported.inbox_hash,
        "serverSigPk": exported.server_sig_pk,
        "publicKeyB64": exported.public_key_b64,
        "secretKeyB64": exported.secret_key_b64,
        "exportedAt": exported.exported_at,
    }


def exported_inbox_from_dict(data: Any) -> ExportedInbox:
    """Read an export from its camelCase JSON form.

    The legacy ``secretKey`` field is accepted in place of ``secretKeyB64``.

    Raises:
        InvalidImportDataError: If the object is not an export blob.
    """
    if not isinstance(data, dict):
        raise InvalidImportDataError("Import data must be a JSON object")
    try:
        version = data["version"]
        email_address = data["emailAddress"]
        expires_at = data["expiresAt"]
        inbox_hash = data["inboxHash"]
        server_sig_pk = data["serverSigPk"]
    except KeyError as e:
        raise InvalidImportDataError(f"Missing required field in import data: {e}") from e

    secret_key = data.get("secretKeyB64", data.get("secretKey"))
    if secret_key is None:
        raise InvalidImportDataError("Missing required field in import data: 'secretKeyB64'")

    fields = {
        "emailAddress": email_address,
        "expiresAt": expires_at,
        "inboxHash": inbox_hash,
        "serverSigPk": server_sig_pk,
        "secretKeyB64": secret_key,
    }
    for name, value in fields.items():
        if not isinstance(value, str):
            raise InvalidImportDataError(f"Field '{name}' must be a string")
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidImportDataError("Field 'version' must be an integer")

    return ExportedInbox(
        version=version,
        email_address=email_address,
        expires_at=expires_at,
        inbox_hash=inbox_hash,
        server_sig_pk=server_sig_pk,
        public_key_b64=data.get("publicKeyB64") or "",
        secret_key_b64=secret_key,
        exported_at=data.get("exportedAt") or "",
    )


def dumps_exported_inbox(exported: ExportedInbox) -> str:
    return json.dumps(exported_inbox_to_dict(exported), indent=2)


def loads_exported_inbox(text: str) -> ExportedInbox:
    """Parse an export blob from JSON text.

    Raises:
        InvalidImportDataError: If the text is not valid JSON or not a blob.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidImportDataError(f"Invalid JSON in import data: {e}") from e
    return exported_inbox_from_dict(data)
