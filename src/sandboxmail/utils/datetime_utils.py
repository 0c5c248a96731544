"""Datetime utilities for sandboxmail."""

from __future__ import annotations

import re
from datetime import datetime, timezone

# Fractional seconds longer than microseconds (RFC 3339 nano) are truncated.
_FRACTION_PATTERN = re.compile(r"(\.\d{1,6})\d*")


def parse_iso_timestamp(timestamp_str: str) -> datetime:
    """Parse an RFC 3339 / ISO 8601 timestamp string to an aware datetime.

    Handles the 'Z' suffix, '+00:00' offsets and nanosecond fractions.
    Naive values are taken as UTC.

    Raises:
        ValueError: If the string is not a valid timestamp.
    """
    if not isinstance(timestamp_str, str) or not timestamp_str:
        raise ValueError(f"Invalid timestamp: {timestamp_str!r}")
    value = timestamp_str.strip()
    if value[-1] in "zZ":
        value = value[:-1] + "+00:00"
    value = _FRACTION_PATTERN.sub(lambda m: m.group(1), value, count=1)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC with a 'Z' suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
