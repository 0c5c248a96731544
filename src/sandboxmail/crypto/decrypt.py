"""Verify-then-decrypt operations for sandboxmail."""

from __future__ import annotations

import json
from typing import Any, cast

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import DecryptionError
from ..types import EncryptedPayload
from .keypair import Keypair, derive_key
from .signature import verify_signature
from .utils import decode_base64_lenient
from .validation import DecodedPayload


def decrypt(payload: DecodedPayload, keypair: Keypair) -> bytes:
    """Decrypt a payload that has already passed signature verification.

    Only ``open_payload`` should call this with data straight off the wire.

    Args:
        payload: The validated and verified payload.
        keypair: The inbox keypair.

    Returns:
        The decrypted plaintext bytes.

    Raises:
        InvalidSecretKeyError: If the keypair's secret key is malformed.
        DecryptionError: If AEAD authentication fails.
    """
    shared_secret = keypair.decapsulate(payload.ct_kem)
    aes_key = derive_key(shared_secret, payload.ct_kem, payload.aad)

    try:
        return AESGCM(aes_key).decrypt(payload.nonce, payload.ciphertext, payload.aad)
    except InvalidTag as e:
        raise DecryptionError("Decryption failed: authentication tag mismatch") from e


def open_payload(
    encrypted_data: EncryptedPayload | dict[str, Any],
    pinned_server_key: bytes,
    keypair: Keypair,
) -> bytes:
    """Verify an encrypted payload against the pinned key, then decrypt it.

    CRITICAL: No decryption step runs unless verification succeeded.

    Args:
        encrypted_data: The encrypted payload from the server.
        pinned_server_key: Server signing key pinned for the inbox.
        keypair: The inbox keypair.

    Returns:
        The decrypted plaintext bytes.
    """
    payload = verify_signature(encrypted_data, pinned_server_key)
    return decrypt(payload, keypair)


def open_json(
    encrypted_data: EncryptedPayload | dict[str, Any],
    pinned_server_key: bytes,
    keypair: Keypair,
    context: str = "content",
) -> dict[str, Any]:
    """Open a payload whose plaintext is a JSON object.

    Args:
        encrypted_data: The encrypted payload.
        pinned_server_key: Server signing key pinned for the inbox.
        keypair: The inbox keypair.
        context: Description of content type for error messages.

    Raises:
        DecryptionError: If the plaintext is not a JSON object.
    """
    plaintext = open_payload(encrypted_data, pinned_server_key, keypair)
    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecryptionError(f"Failed to parse decrypted {context} as JSON: {e}") from e
    if not isinstance(data, dict):
        raise DecryptionError(f"Decrypted {context} is not a JSON object")
    return cast(dict[str, Any], data)


def open_raw(
    encrypted_data: EncryptedPayload | dict[str, Any],
    pinned_server_key: bytes,
    keypair: Keypair,
) -> str:
    """Open an encrypted raw email; the plaintext is base64 of the MIME source.

    Raises:
        DecryptionError: If the inner content cannot be decoded.
    """
    plaintext = open_payload(encrypted_data, pinned_server_key, keypair)
    try:
        raw_bytes = decode_base64_lenient(plaintext.decode("ascii"))
        return raw_bytes.decode("utf-8")
    except (UnicodeDecodeError, ValueError) as e:
        raise DecryptionError(f"Failed to decode decrypted raw email: {e}") from e
