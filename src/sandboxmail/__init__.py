"""sandboxmail Python client.

A client library for a disposable-inbox mail sandbox with end-to-end
post-quantum encryption. Every message is verified against the server
key pinned at inbox creation (ML-DSA-65) before it is decrypted
(ML-KEM-768 + AES-256-GCM).

Example:
    ```python
    import asyncio
    import re
    from sandboxmail import SandboxMailClient, WaitForEmailOptions

    async def main():
        async with SandboxMailClient(api_key="your-api-key") as client:
            # Create a temporary inbox
            inbox = await client.create_inbox()
            print(f"Inbox created: {inbox.email_address}")

            # Wait for an email
            email = await inbox.wait_for_email(
                WaitForEmailOptions(subject=re.compile("Reset"), timeout=10_000)
            )
            print(f"Received: {email.subject}")
            print(f"From: {email.from_address}")

            # Or stream everything that arrives
            async with inbox.watch() as subscription:
                async for email in subscription:
                    print(email.subject)

    asyncio.run(main())
    ```
"""

from .client import InboxEvent, InboxWatcher, SandboxMailClient
from .constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_POLLING_MAX_BACKOFF_MS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_RETRY_STATUS_CODES,
    DEFAULT_SSE_MAX_RECONNECT_INTERVAL_MS,
    DEFAULT_SSE_RECONNECT_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
    FANOUT_CHANNEL_CAPACITY,
)
from .descriptor import InboxDescriptor
from .email import Email
from .errors import (
    ApiError,
    Base64URLDecodeError,
    ClientClosedError,
    DecryptionError,
    EmailNotFoundError,
    ErrorKind,
    InboxAlreadyExistsError,
    InboxNotFoundError,
    InvalidAlgorithmError,
    InvalidImportDataError,
    InvalidPayloadError,
    InvalidSecretKeyError,
    InvalidSizeError,
    InvalidTTLError,
    MissingCredentialsError,
    NetworkError,
    SandboxMailError,
    ServerKeyMismatchError,
    SignatureVerificationError,
    SSEError,
    StrategyError,
    TimeoutError,
    TransientApiError,
    UnauthorizedError,
    UnsupportedPayloadVersionError,
    UnsupportedVersionError,
    WaitCancelledError,
)
from .fanout import Channel, ChannelClosed, Fanout, Subscription
from .inbox import Inbox
from .strategies import DeliveryStrategy, PollingStrategy, SSEStrategy
from .sync import SeenSet, SyncEngine, compute_emails_hash
from .types import (
    Attachment,
    ClientConfig,
    CreateInboxOptions,
    DeliveryStrategyType,
    EmailMetadata,
    ExportedInbox,
    InboxData,
    PollingConfig,
    RawEmail,
    ServerInfo,
    SSEConfig,
    SyncStatus,
    WaitForEmailOptions,
)
from .waiter import EmailMatcher, wait_first, wait_n

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "SandboxMailClient",
    "InboxWatcher",
    "InboxEvent",
    "Inbox",
    "InboxDescriptor",
    "Email",
    # Delivery engine
    "Channel",
    "ChannelClosed",
    "DeliveryStrategy",
    "Fanout",
    "PollingStrategy",
    "SSEStrategy",
    "SeenSet",
    "Subscription",
    "SyncEngine",
    "compute_emails_hash",
    # Waiting
    "EmailMatcher",
    "wait_first",
    "wait_n",
    # Constants
    "DEFAULT_TIMEOUT_MS",
    "DEFAULT_RETRY_DELAY_MS",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_POLLING_INTERVAL_MS",
    "DEFAULT_POLLING_MAX_BACKOFF_MS",
    "DEFAULT_SSE_RECONNECT_INTERVAL_MS",
    "DEFAULT_SSE_MAX_RECONNECT_INTERVAL_MS",
    "DEFAULT_RETRY_STATUS_CODES",
    "FANOUT_CHANNEL_CAPACITY",
    # Configuration
    "ClientConfig",
    "CreateInboxOptions",
    "DeliveryStrategyType",
    "PollingConfig",
    "SSEConfig",
    "WaitForEmailOptions",
    # Data types
    "Attachment",
    "EmailMetadata",
    "ExportedInbox",
    "InboxData",
    "RawEmail",
    "ServerInfo",
    "SyncStatus",
    # Errors
    "ErrorKind",
    "SandboxMailError",
    "ClientClosedError",
    "MissingCredentialsError",
    "ApiError",
    "TransientApiError",
    "UnauthorizedError",
    "NetworkError",
    "TimeoutError",
    "WaitCancelledError",
    "InboxNotFoundError",
    "EmailNotFoundError",
    "InboxAlreadyExistsError",
    "InvalidTTLError",
    "InvalidImportDataError",
    "UnsupportedVersionError",
    "InvalidPayloadError",
    "Base64URLDecodeError",
    "InvalidAlgorithmError",
    "UnsupportedPayloadVersionError",
    "InvalidSizeError",
    "ServerKeyMismatchError",
    "DecryptionError",
    "InvalidSecretKeyError",
    "SignatureVerificationError",
    "SSEError",
    "StrategyError",
    # Version
    "__version__",
]
