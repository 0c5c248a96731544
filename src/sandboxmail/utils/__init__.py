"""Utility functions for sandboxmail."""

from .datetime_utils import format_timestamp, parse_iso_timestamp, utc_now
from .email_utils import decrypt_email_response, matches_filter, parse_attachments

__all__ = [
    "decrypt_email_response",
    "format_timestamp",
    "matches_filter",
    "parse_attachments",
    "parse_iso_timestamp",
    "utc_now",
]
