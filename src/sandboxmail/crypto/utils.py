"""Base64 encoding/decoding utilities for sandboxmail."""

from __future__ import annotations

import base64
import binascii
import re

from ..errors import Base64URLDecodeError

_BASE64URL_PATTERN = re.compile(r"^[A-Za-z0-9_-]*$")
_FORBIDDEN_CHARS = frozenset("+/=")
_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


def to_base64url(data: bytes) -> str:
    """Encode bytes to URL-safe base64 without padding.

    Args:
        data: The bytes to encode.

    Returns:
        URL-safe base64 string without padding.
    """
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def from_base64url(s: str) -> bytes:
    """Decode a strict, unpadded URL-safe base64 string to bytes.

    Args:
        s: The base64url string to decode.

    Returns:
        The decoded bytes.

    Raises:
        Base64URLDecodeError: If the string uses padding, the standard
            alphabet, or any other character outside ``[A-Za-z0-9_-]``.
    """
    if not isinstance(s, str):
        raise Base64URLDecodeError(f"Expected str, got {type(s).__name__}")
    if any(c in _FORBIDDEN_CHARS for c in s):
        raise Base64URLDecodeError("Base64URL string contains forbidden characters (+, /, =)")
    if not _BASE64URL_PATTERN.match(s):
        raise Base64URLDecodeError("Base64URL string contains non-Base64URL characters")
    if len(s) % 4 == 1:
        raise Base64URLDecodeError(f"Base64URL string has invalid length: {len(s)}")

    padding = 4 - (len(s) % 4)
    if padding != 4:
        s += "=" * padding
    try:
        return base64.urlsafe_b64decode(s)
    except (binascii.Error, ValueError) as e:  # pragma: no cover
        raise Base64URLDecodeError(f"Invalid Base64URL string: {e}") from e


def to_base64(data: bytes) -> str:
    """Encode bytes to standard base64 with padding."""
    return base64.b64encode(data).decode("ascii")


def from_base64(s: str) -> bytes:
    """Decode standard base64 string to bytes."""
    return base64.b64decode(s, validate=True)


def decode_base64_lenient(s: str) -> bytes:
    """Decode base64 that may use either alphabet, with or without padding.

    Used for content embedded inside decrypted JSON (attachments, raw
    MIME), which the server emits in standard base64.

    Raises:
        ValueError: If neither alphabet decodes the value.
    """
    stripped = s.strip()
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        pass
    try:
        return base64.b64decode(padded.translate(_URLSAFE_TO_STANDARD), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 content: {e}") from e
