"""Cryptographic envelope for sandboxmail."""

from .constants import HKDF_CONTEXT, MLDSA65_PUBLIC_KEY_SIZE
from .decrypt import decrypt, open_json, open_payload, open_raw
from .keypair import (
    Keypair,
    derive_key,
    derive_public_key_from_secret,
    generate_keypair,
)
from .signature import (
    build_transcript,
    validate_server_public_key,
    verify_signature,
    verify_signature_safe,
)
from .utils import (
    decode_base64_lenient,
    from_base64,
    from_base64url,
    to_base64,
    to_base64url,
)
from .validation import DecodedPayload, validate_payload

__all__ = [
    "HKDF_CONTEXT",
    "MLDSA65_PUBLIC_KEY_SIZE",
    "DecodedPayload",
    "Keypair",
    "build_transcript",
    "decode_base64_lenient",
    "decrypt",
    "derive_key",
    "derive_public_key_from_secret",
    "from_base64",
    "from_base64url",
    "generate_keypair",
    "open_json",
    "open_payload",
    "open_raw",
    "to_base64",
    "to_base64url",
    "validate_payload",
    "validate_server_public_key",
    "verify_signature",
    "verify_signature_safe",
]
