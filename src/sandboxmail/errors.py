"""Error hierarchy for sandboxmail.

Every exception carries a ``kind`` tag so callers can match either on the
class or on ``err.kind`` without caring about the concrete subclass.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error kinds surfaced by the public API."""

    CLIENT_CLOSED = "ClientClosed"
    MISSING_CREDENTIALS = "MissingCredentials"
    UNAUTHORIZED = "Unauthorized"
    INBOX_NOT_FOUND = "InboxNotFound"
    EMAIL_NOT_FOUND = "EmailNotFound"
    INBOX_ALREADY_EXISTS = "InboxAlreadyExists"
    INVALID_TTL = "InvalidTTL"
    INVALID_EXPORT = "InvalidExport"
    NETWORK_ERROR = "NetworkError"
    TRANSIENT_HTTP = "TransientHTTP"
    PERMANENT_HTTP = "PermanentHTTP"
    SIGNATURE_INVALID = "SignatureInvalid"
    SERVER_KEY_MISMATCH = "ServerKeyMismatch"
    ALGORITHM_MISMATCH = "AlgorithmMismatch"
    SIZE_MISMATCH = "SizeMismatch"
    DECRYPTION_FAILED = "DecryptionFailed"
    BAD_ENCODING = "BadEncoding"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    CANCELLED = "Cancelled"
    STRATEGY = "Strategy"


class SandboxMailError(Exception):
    """Base exception for all sandboxmail errors."""

    kind: ErrorKind = ErrorKind.STRATEGY


class ClientClosedError(SandboxMailError):
    """Operation attempted on a client that has been closed."""

    kind = ErrorKind.CLIENT_CLOSED


class MissingCredentialsError(SandboxMailError):
    """No API key was supplied."""

    kind = ErrorKind.MISSING_CREDENTIALS


class ApiError(SandboxMailError):
    """HTTP API error with status code.

    Attributes:
        status_code: The HTTP status code.
        message: The error message.
    """

    kind = ErrorKind.PERMANENT_HTTP

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"API Error ({status_code}): {message}")


class TransientApiError(ApiError):
    """Retryable HTTP status that persisted after all retries."""

    kind = ErrorKind.TRANSIENT_HTTP


class UnauthorizedError(ApiError):
    """The API key was rejected (401/403)."""

    kind = ErrorKind.UNAUTHORIZED


class NetworkError(SandboxMailError):
    """Network communication failure."""

    kind = ErrorKind.NETWORK_ERROR


class TimeoutError(SandboxMailError):
    """A wait exceeded its deadline."""

    kind = ErrorKind.DEADLINE_EXCEEDED


class WaitCancelledError(SandboxMailError):
    """A wait was cancelled through its cancel signal."""

    kind = ErrorKind.CANCELLED


class InboxNotFoundError(SandboxMailError):
    """Inbox not found (404)."""

    kind = ErrorKind.INBOX_NOT_FOUND


class EmailNotFoundError(SandboxMailError):
    """Email not found (404)."""

    kind = ErrorKind.EMAIL_NOT_FOUND


class InboxAlreadyExistsError(SandboxMailError):
    """Inbox already exists locally (import) or on the server (409)."""

    kind = ErrorKind.INBOX_ALREADY_EXISTS


class InvalidTTLError(SandboxMailError):
    """Requested inbox TTL is outside the allowed range."""

    kind = ErrorKind.INVALID_TTL


class InvalidImportDataError(SandboxMailError):
    """Invalid data provided for inbox import."""

    kind = ErrorKind.INVALID_EXPORT


class UnsupportedVersionError(InvalidImportDataError):
    """Export blob carries an unknown version."""


class InvalidPayloadError(SandboxMailError):
    """Encrypted payload is structurally malformed or badly encoded."""

    kind = ErrorKind.BAD_ENCODING


class Base64URLDecodeError(InvalidPayloadError, ValueError):
    """A value is not strict unpadded base64url."""


class InvalidAlgorithmError(SandboxMailError):
    """Payload names an algorithm outside the pinned suite."""

    kind = ErrorKind.ALGORITHM_MISMATCH


class UnsupportedPayloadVersionError(InvalidAlgorithmError):
    """Payload protocol version is not supported."""


class InvalidSizeError(SandboxMailError):
    """A decoded payload field has the wrong length."""

    kind = ErrorKind.SIZE_MISMATCH


class ServerKeyMismatchError(SandboxMailError):
    """Payload server key differs from the key pinned for the inbox."""

    kind = ErrorKind.SERVER_KEY_MISMATCH


class DecryptionError(SandboxMailError):
    """Cryptographic decryption failure."""

    kind = ErrorKind.DECRYPTION_FAILED


class InvalidSecretKeyError(DecryptionError):
    """The KEM secret key is malformed."""


class SignatureVerificationError(SandboxMailError):
    """Signature verification failure.

    CRITICAL: This error indicates potential tampering with the encrypted data.
    Should be logged immediately and never silently ignored.
    """

    kind = ErrorKind.SIGNATURE_INVALID


class SSEError(SandboxMailError):
    """Server-Sent Events connection error."""

    kind = ErrorKind.NETWORK_ERROR


class StrategyError(SandboxMailError):
    """Delivery strategy configuration or execution error."""
