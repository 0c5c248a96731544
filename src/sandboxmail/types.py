"""Type definitions for sandboxmail."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from re import Pattern
from typing import Any, TypedDict

from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLLING_BACKOFF_MULTIPLIER,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_POLLING_JITTER_FACTOR,
    DEFAULT_POLLING_MAX_BACKOFF_MS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_RETRY_STATUS_CODES,
    DEFAULT_SSE_BACKOFF_MULTIPLIER,
    DEFAULT_SSE_JITTER_FACTOR,
    DEFAULT_SSE_MAX_RECONNECT_INTERVAL_MS,
    DEFAULT_SSE_RECONNECT_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_WAIT_TIMEOUT_MS,
)


class DeliveryStrategyType(str, Enum):
    """Delivery strategy types."""

    SSE = "sse"
    POLLING = "polling"
    AUTO = "auto"


@dataclass
class ClientConfig:
    """Configuration for SandboxMailClient.

    Attributes:
        api_key: API key for authentication.
        base_url: Base URL for the API server.
        timeout: HTTP request timeout in milliseconds.
        max_retries: Maximum number of retry attempts.
        retry_delay: Initial retry delay in milliseconds.
        retry_on_status_codes: HTTP status codes to retry on.
        strategy: Delivery strategy type.
        check_key: Validate the API key while opening the client.
    """

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: int = DEFAULT_RETRY_DELAY_MS
    retry_on_status_codes: tuple[int, ...] = DEFAULT_RETRY_STATUS_CODES
    strategy: DeliveryStrategyType = DeliveryStrategyType.AUTO
    check_key: bool = False


@dataclass
class CreateInboxOptions:
    """Options for creating an inbox.

    Attributes:
        ttl: Time-to-live in seconds (min: 60, max: server max_ttl).
        email_address: Desired email address or domain.
    """

    ttl: int | None = None
    email_address: str | None = None


@dataclass
class ServerInfo:
    """Server information and capabilities.

    Attributes:
        server_sig_pk: Base64URL-encoded server signing public key.
        algs: Cryptographic algorithms supported by the server.
        context: Context string for the encryption scheme.
        max_ttl: Maximum time-to-live for inboxes in seconds.
        default_ttl: Default time-to-live for inboxes in seconds.
        supports_push: Whether the server offers the event stream.
        allowed_domains: List of domains allowed for inbox creation.
    """

    server_sig_pk: str
    algs: dict[str, str]
    context: str
    max_ttl: int
    default_ttl: int
    supports_push: bool = True
    allowed_domains: list[str] = field(default_factory=list)


@dataclass
class SyncStatus:
    """Inbox sync status.

    Attributes:
        email_count: Number of emails in the inbox.
        emails_hash: Hash of email IDs for change detection.
    """

    email_count: int
    emails_hash: str


@dataclass
class EmailMetadata:
    """Listing entry for an email, without any decrypted content."""

    id: str
    received_at: datetime
    is_read: bool


@dataclass
class RawEmail:
    """Raw email content.

    Attributes:
        id: The email ID.
        raw: The raw MIME email content.
    """

    id: str
    raw: str


@dataclass
class InboxData:
    """Data returned when creating an inbox."""

    email_address: str
    expires_at: str
    inbox_hash: str
    server_sig_pk: str


@dataclass
class ExportedInbox:
    """Exported inbox blob.

    All keys are base64url without padding; timestamps are RFC 3339.

    Attributes:
        version: Export format version (always 1).
        email_address: The email address assigned to the inbox.
        expires_at: Timestamp when the inbox will expire.
        inbox_hash: Unique inbox identifier.
        server_sig_pk: Server ML-DSA-65 public key (1952 bytes decoded).
        public_key_b64: ML-KEM-768 public key (1184 bytes decoded).
        secret_key_b64: ML-KEM-768 secret key (2400 bytes decoded).
        exported_at: Timestamp when the inbox was exported.
    """

    version: int
    email_address: str
    expires_at: str
    inbox_hash: str
    server_sig_pk: str
    public_key_b64: str
    secret_key_b64: str
    exported_at: str


@dataclass
class Attachment:
    """Email attachment.

    Attributes:
        filename: Attachment filename.
        content_type: MIME content type.
        size: Attachment size in bytes.
        content: Attachment content as bytes.
        content_id: Content ID for inline attachments.
        content_disposition: Content disposition (attachment/inline).
        checksum: Optional SHA-256 hash of the attachment content.
    """

    filename: str
    content_type: str
    size: int
    content: bytes
    content_id: str | None = None
    content_disposition: str | None = None
    checksum: str | None = None


# Type alias for email filter matcher
EmailFilterMatcher = str | Pattern[str]


@dataclass
class WaitForEmailOptions:
    """Options for waiting for emails.

    String matchers compare for equality, compiled patterns use ``search``.
    All given matchers must hold.

    Attributes:
        subject: Match email subject.
        from_address: Match sender address.
        predicate: Custom filter function over an Email.
        timeout: Max wait time in milliseconds.
    """

    subject: EmailFilterMatcher | None = None
    from_address: EmailFilterMatcher | None = None
    predicate: Callable[..., bool] | None = None
    timeout: int = DEFAULT_WAIT_TIMEOUT_MS


@dataclass
class PollingConfig:
    """Configuration for polling strategy.

    Attributes:
        initial_interval: Starting poll interval in milliseconds.
        max_backoff: Maximum poll interval in milliseconds.
        backoff_multiplier: Growth factor while an inbox stays idle.
        jitter_factor: Symmetric random jitter (0.1 = +/-10%).
    """

    initial_interval: int = DEFAULT_POLLING_INTERVAL_MS
    max_backoff: int = DEFAULT_POLLING_MAX_BACKOFF_MS
    backoff_multiplier: float = DEFAULT_POLLING_BACKOFF_MULTIPLIER
    jitter_factor: float = DEFAULT_POLLING_JITTER_FACTOR


ErrorCallback = Callable[[BaseException], None]


@dataclass
class SSEConfig:
    """Configuration for SSE strategy.

    Attributes:
        reconnect_interval: Initial reconnection delay in milliseconds.
        max_reconnect_interval: Cap on the reconnection delay in milliseconds.
        backoff_multiplier: Growth factor between failed attempts.
        jitter_factor: Symmetric random jitter (0.1 = +/-10%).
        max_reconnect_attempts: Give up after this many consecutive failures.
            None retries forever.
        on_error: Callback invoked when the stream gives up.
    """

    reconnect_interval: int = DEFAULT_SSE_RECONNECT_INTERVAL_MS
    max_reconnect_interval: int = DEFAULT_SSE_MAX_RECONNECT_INTERVAL_MS
    backoff_multiplier: float = DEFAULT_SSE_BACKOFF_MULTIPLIER
    jitter_factor: float = DEFAULT_SSE_JITTER_FACTOR
    max_reconnect_attempts: int | None = None
    on_error: ErrorCallback | None = None


class AlgorithmSuite(TypedDict):
    """Algorithm identifiers carried by every payload."""

    kem: str
    sig: str
    aead: str
    kdf: str


class EncryptedPayload(TypedDict):
    """Encrypted payload structure from server."""

    v: int
    algs: AlgorithmSuite
    ct_kem: str
    nonce: str
    aad: str
    ciphertext: str
    sig: str
    server_sig_pk: str


class EmailResponse(TypedDict, total=False):
    """Email response from server.

    ``encryptedParsed`` is absent from metadata-only listings.
    """

    id: str
    inboxId: str
    receivedAt: str
    isRead: bool
    encryptedMetadata: EncryptedPayload
    encryptedParsed: EncryptedPayload


class RawEmailResponse(TypedDict):
    """Raw email response from server."""

    id: str
    encryptedRaw: EncryptedPayload


@dataclass(frozen=True)
class SSEEvent:
    """A new-email notification read from the event stream."""

    inbox_hash: str
    email_id: str
    encrypted_metadata: dict[str, Any] | None = None


# Callback types
EmailCallback = Callable[..., Any]
SyncErrorCallback = Callable[..., Any]
