"""Email utility functions for sandboxmail."""

from __future__ import annotations

from re import Pattern
from typing import TYPE_CHECKING, Any

from ..crypto import Keypair, decode_base64_lenient, open_json
from ..errors import InvalidPayloadError
from ..types import Attachment, EmailFilterMatcher, EmailResponse, WaitForEmailOptions

if TYPE_CHECKING:
    from ..email import Email


def parse_attachments(data: list[dict[str, Any]] | None) -> list[Attachment]:
    """Parse attachments from decrypted data.

    Content is decoded leniently: standard base64 first, then URL-safe.
    An attachment whose content decodes with neither alphabet is kept with
    empty content.
    """
    if not data:
        return []

    attachments = []
    for item in data:
        content_b64 = item.get("content") or ""
        try:
            content = decode_base64_lenient(content_b64)
        except ValueError:
            content = b""

        attachments.append(
            Attachment(
                filename=item.get("filename", ""),
                content_type=item.get("contentType", "application/octet-stream"),
                size=item.get("size", len(content)),
                content=content,
                content_id=item.get("contentId"),
                content_disposition=item.get("contentDisposition"),
                checksum=item.get("checksum"),
            )
        )
    return attachments


def _parse_recipients(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def decrypt_email_response(
    email_response: EmailResponse,
    keypair: Keypair,
    pinned_server_key: bytes,
) -> dict[str, Any]:
    """Verify and decrypt an email response into its components.

    Both the metadata and the parsed body are opened against the pinned
    server key; the parsed body is optional.

    Raises:
        InvalidPayloadError: If the response carries no encrypted metadata.
        SandboxMailError: Any envelope error, unchanged.
    """
    encrypted_metadata = email_response.get("encryptedMetadata")
    if encrypted_metadata is None:
        raise InvalidPayloadError(f"Email {email_response.get('id')} has no encryptedMetadata")

    metadata = open_json(encrypted_metadata, pinned_server_key, keypair, context="metadata")

    encrypted_parsed = email_response.get("encryptedParsed")
    parsed: dict[str, Any] = {}
    if encrypted_parsed is not None:
        parsed = open_json(encrypted_parsed, pinned_server_key, keypair, context="content")

    return {
        "id": email_response["id"],
        "inbox_id": email_response.get("inboxId"),
        "received_at": email_response.get("receivedAt") or metadata.get("receivedAt"),
        "is_read": email_response.get("isRead", False),
        "from_address": metadata.get("from", ""),
        "to": _parse_recipients(metadata.get("to")),
        "subject": metadata.get("subject", ""),
        "text": parsed.get("text"),
        "html": parsed.get("html"),
        "headers": parsed.get("headers") or {},
        "attachments": parse_attachments(parsed.get("attachments")),
        "links": parsed.get("links") or [],
        "auth_results": parsed.get("authResults") or {},
        "metadata": metadata,
        "parsed_metadata": parsed.get("metadata") or {},
    }


def _matches(matcher: EmailFilterMatcher, value: str) -> bool:
    if isinstance(matcher, Pattern):
        return matcher.search(value) is not None
    return matcher == value


def matches_filter(email: Email, options: WaitForEmailOptions) -> bool:
    """Check if an email matches every matcher set on the options."""
    if options.subject is not None and not _matches(options.subject, email.subject or ""):
        return False

    if options.from_address is not None and not _matches(
        options.from_address, email.from_address or ""
    ):
        return False

    return not (options.predicate is not None and not options.predicate(email))
