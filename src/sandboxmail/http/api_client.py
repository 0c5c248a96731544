"""HTTP API client with retry logic for sandboxmail."""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal, cast
from urllib.parse import quote

import httpx
from httpx_sse import ServerSentEvent, aconnect_sse

from ..errors import (
    ApiError,
    EmailNotFoundError,
    InboxAlreadyExistsError,
    InboxNotFoundError,
    NetworkError,
    TransientApiError,
    UnauthorizedError,
)
from ..types import (
    ClientConfig,
    EmailMetadata,
    EmailResponse,
    InboxData,
    RawEmailResponse,
    ServerInfo,
    SyncStatus,
)
from ..utils import parse_iso_timestamp

Resource = Literal["inbox", "email"]

# More robust patterns for error classification
_INBOX_NOT_FOUND_PATTERN = re.compile(r"\binbox\b.*\b(not found|does not exist)\b", re.IGNORECASE)
_EMAIL_NOT_FOUND_PATTERN = re.compile(r"\bemail\b.*\b(not found|does not exist)\b", re.IGNORECASE)


def _encode_path_segment(value: str) -> str:
    """URL-encode a path segment for use in API URLs."""
    return quote(value, safe="")


class ApiClient:
    """HTTP client for the mail sandbox API with automatic retry logic.

    Attributes:
        config: Client configuration.
    """

    def __init__(self, config: ClientConfig) -> None:
        self.config = config
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={
                    "X-API-Key": self.config.api_key,
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self.config.timeout / 1000),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        resource: Resource = "inbox",
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, DELETE, PATCH).
            path: API path.
            json: JSON body for the request.
            params: Query parameters.
            resource: Resource a 404 refers to when the message does not say.

        Returns:
            The HTTP response.

        Raises:
            TransientApiError: If a retryable status persists after all retries.
            ApiError: For other error statuses (see ``_handle_error_response``).
            NetworkError: If there's a network communication failure.
        """
        client = await self._get_client()

        for attempt in range(self.config.max_retries + 1):
            try:
                response = await client.request(method, path, json=json, params=params)
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt < self.config.max_retries:
                    await asyncio.sleep(self._retry_delay(attempt))
                    continue
                raise NetworkError(f"Network error: {e}") from e

            if response.status_code in self.config.retry_on_status_codes:
                if attempt < self.config.max_retries:
                    await asyncio.sleep(self._retry_delay(attempt))
                    continue
                raise TransientApiError(response.status_code, self._error_message(response))

            if response.status_code >= 400:
                self._handle_error_response(response, resource)

            return response

        raise NetworkError(  # pragma: no cover
            f"Request failed after {self.config.max_retries} retries"
        )

    def _retry_delay(self, attempt: int) -> float:
        return self.config.retry_delay * (2**attempt) / 1000

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                return str(data.get("message", data.get("error", response.text)))
            return response.text
        except (ValueError, json.JSONDecodeError):
            return response.text or f"HTTP {response.status_code}"

    def _handle_error_response(self, response: httpx.Response, resource: Resource) -> None:
        """Map an HTTP error response to an exception.

        Raises:
            UnauthorizedError: On 401 and 403.
            InboxNotFoundError: On 404 for an inbox.
            EmailNotFoundError: On 404 for an email.
            InboxAlreadyExistsError: On 409.
            ApiError: For other API errors.
        """
        message = self._error_message(response)
        status = response.status_code

        if status in (401, 403):
            raise UnauthorizedError(status, message)

        if status == 404:
            if _EMAIL_NOT_FOUND_PATTERN.search(message):
                raise EmailNotFoundError(message)
            if _INBOX_NOT_FOUND_PATTERN.search(message):
                raise InboxNotFoundError(message)
            if resource == "email":
                raise EmailNotFoundError(message)
            raise InboxNotFoundError(message)

        if status == 409:
            raise InboxAlreadyExistsError(message)

        raise ApiError(status, message)

    # Server endpoints

    async def check_key(self) -> bool:
        """Validate the API key."""
        response = await self._request("GET", "/api/check-key")
        data = response.json()
        return cast(bool, data.get("ok", False))

    async def get_server_info(self) -> ServerInfo:
        """Get server information and capabilities."""
        response = await self._request("GET", "/api/server-info")
        data = response.json()
        return ServerInfo(
            server_sig_pk=data["serverSigPk"],
            algs=data["algs"],
            context=data["context"],
            max_ttl=data.get("maxTtl", 0),
            default_ttl=data.get("defaultTtl", 0),
            supports_push=bool(data.get("supportsPush", True)),
            allowed_domains=data.get("allowedDomains", []),
        )

    # Inbox endpoints

    async def create_inbox(
        self,
        client_kem_pk: str,
        *,
        ttl: int | None = None,
        email_address: str | None = None,
    ) -> InboxData:
        """Create a new inbox.

        Args:
            client_kem_pk: Base64url-encoded ML-KEM-768 public key.
            ttl: Time-to-live in seconds.
            email_address: Desired email address or domain.
        """
        body: dict[str, Any] = {"clientKemPk": client_kem_pk}
        if ttl is not None:
            body["ttl"] = ttl
        if email_address is not None:
            body["emailAddress"] = email_address

        response = await self._request("POST", "/api/inboxes", json=body)
        data = response.json()
        return InboxData(
            email_address=data["emailAddress"],
            expires_at=data["expiresAt"],
            inbox_hash=data["inboxHash"],
            server_sig_pk=data["serverSigPk"],
        )

    async def delete_inbox(self, email_address: str) -> None:
        encoded = _encode_path_segment(email_address)
        await self._request("DELETE", f"/api/inboxes/{encoded}")

    async def delete_all_inboxes(self) -> int:
        """Delete all inboxes for the API key.

        Returns:
            Number of inboxes deleted.
        """
        response = await self._request("DELETE", "/api/inboxes")
        data = response.json()
        return cast(int, data.get("deleted", 0))

    async def get_sync_status(self, email_address: str) -> SyncStatus:
        """Get inbox sync status (email count and emails-hash)."""
        encoded = _encode_path_segment(email_address)
        response = await self._request("GET", f"/api/inboxes/{encoded}/sync")
        data = response.json()
        return SyncStatus(
            email_count=data["emailCount"],
            emails_hash=data["emailsHash"],
        )

    # Email endpoints

    async def list_emails(
        self, email_address: str, include_content: bool = True
    ) -> list[EmailResponse]:
        """List all emails in an inbox.

        Args:
            email_address: The email address of the inbox.
            include_content: If True, include the encrypted parsed body.
        """
        encoded = _encode_path_segment(email_address)
        params = {"includeContent": "true"} if include_content else None
        response = await self._request("GET", f"/api/inboxes/{encoded}/emails", params=params)
        return cast(list[EmailResponse], response.json())

    async def list_emails_metadata_only(self, email_address: str) -> list[EmailMetadata]:
        """List IDs, receive times and read flags of all emails in an inbox."""
        return [
            EmailMetadata(
                id=item["id"],
                received_at=parse_iso_timestamp(item["receivedAt"]),
                is_read=bool(item.get("isRead", False)),
            )
            for item in await self.list_emails(email_address, include_content=False)
        ]

    async def get_email(self, email_address: str, email_id: str) -> EmailResponse:
        encoded_addr = _encode_path_segment(email_address)
        encoded_id = _encode_path_segment(email_id)
        response = await self._request(
            "GET", f"/api/inboxes/{encoded_addr}/emails/{encoded_id}", resource="email"
        )
        return cast(EmailResponse, response.json())

    async def get_raw_email(self, email_address: str, email_id: str) -> RawEmailResponse:
        encoded_addr = _encode_path_segment(email_address)
        encoded_id = _encode_path_segment(email_id)
        response = await self._request(
            "GET", f"/api/inboxes/{encoded_addr}/emails/{encoded_id}/raw", resource="email"
        )
        return cast(RawEmailResponse, response.json())

    async def mark_email_as_read(self, email_address: str, email_id: str) -> None:
        encoded_addr = _encode_path_segment(email_address)
        encoded_id = _encode_path_segment(email_id)
        await self._request(
            "PATCH", f"/api/inboxes/{encoded_addr}/emails/{encoded_id}/read", resource="email"
        )

    async def delete_email(self, email_address: str, email_id: str) -> None:
        encoded_addr = _encode_path_segment(email_address)
        encoded_id = _encode_path_segment(email_id)
        await self._request(
            "DELETE", f"/api/inboxes/{encoded_addr}/emails/{encoded_id}", resource="email"
        )

    # Event stream

    @asynccontextmanager
    async def open_event_stream(
        self, inbox_hashes: list[str]
    ) -> AsyncIterator[AsyncIterator[ServerSentEvent]]:
        """Open the server-sent event stream for a set of inboxes.

        Yields an async iterator of raw SSE frames. The connection has no
        read timeout and is closed when the context exits.

        Raises:
            NetworkError: If the connection cannot be established.
            ApiError: If the server rejects the stream request.
        """
        async with httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={
                "X-API-Key": self.config.api_key,
                "Accept": "text/event-stream",
            },
            timeout=httpx.Timeout(self.config.timeout / 1000, read=None),
        ) as client:
            try:
                async with aconnect_sse(
                    client, "GET", "/api/events", params={"inboxes": ",".join(inbox_hashes)}
                ) as event_source:
                    response = event_source.response
                    if response.status_code >= 400:
                        await response.aread()
                        self._handle_error_response(response, "inbox")
                    yield event_source.aiter_sse()
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as e:
                raise NetworkError(f"Event stream error: {e}") from e
