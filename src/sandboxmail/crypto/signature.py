"""ML-DSA-65 signature verification for sandboxmail."""

from __future__ import annotations

from typing import Any

from pqcrypto.sign.ml_dsa_65 import verify as mldsa_verify

from ..errors import SandboxMailError, SignatureVerificationError
from ..types import EncryptedPayload
from .constants import HKDF_CONTEXT, MLDSA65_PUBLIC_KEY_SIZE
from .validation import DecodedPayload, validate_payload


def build_transcript(payload: DecodedPayload) -> bytes:
    """Build the exact byte string the server signed.

    The transcript must be constructed byte-for-byte identical to the server:
    version byte, ciphersuite, context, then the raw binary fields.
    """
    return b"".join(
        (
            bytes([payload.version]),
            payload.ciphersuite.encode("ascii"),
            HKDF_CONTEXT.encode("ascii"),
            payload.ct_kem,
            payload.nonce,
            payload.aad,
            payload.ciphertext,
            payload.server_sig_pk,
        )
    )


def validate_server_public_key(server_sig_pk: bytes) -> bool:
    """Validate the server's ML-DSA-65 public key length."""
    return len(server_sig_pk) == MLDSA65_PUBLIC_KEY_SIZE


def verify_signature(
    encrypted_data: EncryptedPayload | dict[str, Any],
    pinned_server_key: bytes,
) -> DecodedPayload:
    """Validate a payload and verify its ML-DSA-65 signature.

    CRITICAL: Always verify signature BEFORE decryption to detect tampering.

    Args:
        encrypted_data: The encrypted payload from the server.
        pinned_server_key: Server signing key pinned for the inbox.

    Returns:
        The decoded payload, safe to hand to ``decrypt``.

    Raises:
        SignatureVerificationError: If signature verification fails.
        ServerKeyMismatchError, InvalidAlgorithmError, InvalidSizeError,
        InvalidPayloadError: From payload validation.
    """
    payload = validate_payload(encrypted_data, pinned_server_key)
    transcript = build_transcript(payload)

    try:
        result = mldsa_verify(payload.server_sig_pk, transcript, payload.sig)
    except Exception as e:
        raise SignatureVerificationError(
            f"SIGNATURE VERIFICATION FAILED - Data may be tampered! Error: {e}"
        ) from e

    # Older pqcrypto releases raise on failure, newer ones return False.
    if result is False:
        raise SignatureVerificationError(
            "SIGNATURE VERIFICATION FAILED - Data may be tampered!"
        )
    return payload


def verify_signature_safe(
    encrypted_data: EncryptedPayload | dict[str, Any],
    pinned_server_key: bytes,
) -> bool:
    """Verify the ML-DSA-65 signature without raising exceptions."""
    try:
        verify_signature(encrypted_data, pinned_server_key)
        return True
    except SandboxMailError:
        return False
