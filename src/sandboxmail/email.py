"""Decrypted emails bound to their inbox."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .types import Attachment, EmailResponse
from .utils import parse_iso_timestamp, utc_now
from .utils.email_utils import decrypt_email_response

if TYPE_CHECKING:
    from .inbox import Inbox
    from .types import RawEmail


@dataclass
class Email:
    """An email whose metadata and body passed the envelope checks.

    ``auth_results`` is the server's SPF/DKIM/DMARC blob, passed through
    untouched. ``metadata`` and ``parsed_metadata`` keep the raw decrypted
    documents for fields not surfaced as attributes.
    """

    id: str
    from_address: str
    to: list[str]
    subject: str
    received_at: datetime
    is_read: bool = False
    text: str | None = None
    html: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    attachments: list[Attachment] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    auth_results: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict, repr=False)
    parsed_metadata: dict[str, Any] = field(default_factory=dict, repr=False)
    _inbox: Inbox = field(init=False, repr=False, compare=False)

    @classmethod
    def _from_response(cls, response: EmailResponse, inbox: Inbox) -> Email:
        descriptor = inbox.descriptor
        fields = decrypt_email_response(
            response,
            descriptor.keypair,
            pinned_server_key=descriptor.server_sig_pk,
        )
        fields.pop("inbox_id", None)
        received = fields.pop("received_at")

        email = cls(received_at=parse_iso_timestamp(received) if received else utc_now(), **fields)
        email._inbox = inbox
        return email

    @property
    def inbox(self) -> Inbox:
        return self._inbox

    async def mark_as_read(self) -> None:
        await self._inbox.mark_email_as_read(self.id)
        self.is_read = True

    async def delete(self) -> None:
        await self._inbox.delete_email(self.id)

    async def get_raw(self) -> RawEmail:
        """Fetch and decrypt the original MIME source."""
        return await self._inbox.get_raw_email(self.id)
