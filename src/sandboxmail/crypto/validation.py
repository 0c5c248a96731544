"""Encrypted payload validation for sandboxmail.

Checks run in a fixed order and stop at the first failure:

1. structure - every field present with the right JSON type
2. server key - ``server_sig_pk`` is byte-equal to the pinned key
3. version - ``v`` equals the supported protocol version
4. algorithms - ``algs`` names exactly the pinned suite
5. sizes - decoded binary fields have their fixed lengths

No cryptographic primitive is touched here.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any

from ..errors import (
    Base64URLDecodeError,
    InvalidAlgorithmError,
    InvalidPayloadError,
    InvalidSizeError,
    ServerKeyMismatchError,
    UnsupportedPayloadVersionError,
)
from ..types import EncryptedPayload
from .constants import (
    AES_GCM_NONCE_SIZE,
    AES_GCM_TAG_SIZE,
    EXPECTED_AEAD,
    EXPECTED_KDF,
    EXPECTED_KEM,
    EXPECTED_SIG,
    MLDSA65_PUBLIC_KEY_SIZE,
    MLDSA65_SIGNATURE_SIZE,
    MLKEM768_CIPHERTEXT_SIZE,
    PROTOCOL_VERSION,
)
from .utils import from_base64url

_REQUIRED_FIELDS = ("v", "algs", "ct_kem", "nonce", "aad", "ciphertext", "sig", "server_sig_pk")
_ALG_FIELDS = ("kem", "sig", "aead", "kdf")


@dataclass(frozen=True)
class DecodedPayload:
    """An encrypted payload whose fields passed validation and were decoded."""

    version: int
    algs: dict[str, str]
    ct_kem: bytes
    nonce: bytes
    aad: bytes
    ciphertext: bytes
    sig: bytes
    server_sig_pk: bytes

    @property
    def ciphersuite(self) -> str:
        algs = self.algs
        return f"{algs['kem']}:{algs['sig']}:{algs['aead']}:{algs['kdf']}"


def validate_payload(
    encrypted_data: EncryptedPayload | dict[str, Any],
    pinned_server_key: bytes,
) -> DecodedPayload:
    """Validate an encrypted payload and decode its binary fields.

    Args:
        encrypted_data: The encrypted payload as received on the wire.
        pinned_server_key: Raw bytes of the server signing key pinned for
            the inbox at creation or import.

    Returns:
        The decoded payload.

    Raises:
        InvalidPayloadError: If fields are missing, mistyped or badly encoded.
        ServerKeyMismatchError: If the payload server key is not the pinned key.
        UnsupportedPayloadVersionError: If the version is not supported.
        InvalidAlgorithmError: If any algorithm differs from the pinned suite.
        InvalidSizeError: If a decoded field has the wrong length.
    """
    _validate_structure(encrypted_data)
    server_sig_pk = _validate_server_key(encrypted_data, pinned_server_key)
    _validate_version(encrypted_data)
    _validate_algorithms(encrypted_data)

    ct_kem = _decode_sized(encrypted_data, "ct_kem", MLKEM768_CIPHERTEXT_SIZE)
    nonce = _decode_sized(encrypted_data, "nonce", AES_GCM_NONCE_SIZE)
    sig = _decode_sized(encrypted_data, "sig", MLDSA65_SIGNATURE_SIZE)
    aad = _decode(encrypted_data, "aad")
    ciphertext = _decode(encrypted_data, "ciphertext")
    if len(ciphertext) < AES_GCM_TAG_SIZE:
        raise InvalidSizeError(
            f"Invalid ciphertext size: {len(ciphertext)} bytes, "
            f"expected at least {AES_GCM_TAG_SIZE}"
        )

    return DecodedPayload(
        version=encrypted_data["v"],
        algs=dict(encrypted_data["algs"]),
        ct_kem=ct_kem,
        nonce=nonce,
        aad=aad,
        ciphertext=ciphertext,
        sig=sig,
        server_sig_pk=server_sig_pk,
    )


def _validate_structure(encrypted_data: Any) -> None:
    """Validate payload structure - all required fields present."""
    if not isinstance(encrypted_data, dict):
        raise InvalidPayloadError("Encrypted payload must be an object")

    for name in _REQUIRED_FIELDS:
        if name not in encrypted_data:
            raise InvalidPayloadError(f"Missing required field: {name}")

    version = encrypted_data["v"]
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidPayloadError("Field 'v' must be an integer")

    algs = encrypted_data["algs"]
    if not isinstance(algs, dict):
        raise InvalidPayloadError("Field 'algs' must be an object")
    for name in _ALG_FIELDS:
        if not isinstance(algs.get(name), str):
            raise InvalidPayloadError(f"Missing required field: algs.{name}")

    for name in _REQUIRED_FIELDS[2:]:
        if not isinstance(encrypted_data[name], str):
            raise InvalidPayloadError(f"Field '{name}' must be a string")


def _validate_version(encrypted_data: EncryptedPayload) -> None:
    version = encrypted_data["v"]
    if version != PROTOCOL_VERSION:
        raise UnsupportedPayloadVersionError(
            f"Unsupported protocol version: {version}, expected {PROTOCOL_VERSION}"
        )


def _validate_algorithms(encrypted_data: EncryptedPayload) -> None:
    algs = encrypted_data["algs"]
    expected = {
        "kem": EXPECTED_KEM,
        "sig": EXPECTED_SIG,
        "aead": EXPECTED_AEAD,
        "kdf": EXPECTED_KDF,
    }
    for slot, name in expected.items():
        if algs[slot] != name:
            raise InvalidAlgorithmError(
                f"Unsupported {slot.upper()} algorithm: {algs[slot]}, expected {name}"
            )


def _validate_server_key(encrypted_data: EncryptedPayload, pinned_server_key: bytes) -> bytes:
    """Compare the payload server key against the pinned key in constant time.

    The key bytes are only decoded, never interpreted as an ML-DSA key.
    """
    payload_key = _decode(encrypted_data, "server_sig_pk")
    if not hmac.compare_digest(payload_key, pinned_server_key):
        raise ServerKeyMismatchError(
            "Server public key in payload does not match pinned server key from inbox creation"
        )
    if len(payload_key) != MLDSA65_PUBLIC_KEY_SIZE:
        raise InvalidSizeError(
            f"Invalid server_sig_pk size: {len(payload_key)} bytes, "
            f"expected {MLDSA65_PUBLIC_KEY_SIZE}"
        )
    return payload_key


def _decode(encrypted_data: EncryptedPayload, name: str) -> bytes:
    try:
        return from_base64url(encrypted_data[name])  # type: ignore[literal-required]
    except Base64URLDecodeError as e:
        raise InvalidPayloadError(f"Failed to decode {name}: {e}") from e


def _decode_sized(encrypted_data: EncryptedPayload, name: str, size: int) -> bytes:
    value = _decode(encrypted_data, name)
    if len(value) != size:
        raise InvalidSizeError(f"Invalid {name} size: {len(value)} bytes, expected {size}")
    return value
