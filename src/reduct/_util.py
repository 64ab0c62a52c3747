"""
Shared utility functions for the ReductStore client.

This module provides small conversions used by both the batch protocol and the
request/response mappers.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from urllib.parse import quote, urlencode

from reduct._types import LabelValue, Timestamp, TimestampLike


def unix_timestamp_from_any(value: TimestampLike) -> Timestamp:
    """
    Convert a timestamp-like value to UNIX microseconds.

    - ``int`` values are already microseconds
    - ``float`` values are seconds
    - ``datetime`` values are converted (naive values are treated as UTC)
    - ``str`` values are parsed as ISO 8601

    Args:
        value: The value to convert

    Returns:
        UNIX timestamp in microseconds
    """
    if isinstance(value, bool):
        raise TypeError("Timestamp must not be a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value * 1_000_000))
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
        return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")


def unix_timestamp_now() -> Timestamp:
    """Current time as UNIX microseconds."""
    return unix_timestamp_from_any(datetime.now(timezone.utc))


def label_value_to_str(value: LabelValue) -> str:
    """
    Convert a label value to its wire form.

    Booleans become ``"true"``/``"false"``, everything else goes through ``str()``.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def normalize_labels(labels: Mapping[str, LabelValue] | None) -> dict[str, str]:
    """Return a copy of labels with all values converted to strings."""
    if not labels:
        return {}
    return {key: label_value_to_str(value) for key, value in labels.items()}


def parse_api_version(header: str | None) -> tuple[int, int] | None:
    """
    Parse the ``x-reduct-api`` header (``"<major>.<minor>"``).

    Returns:
        ``(major, minor)`` or None if the header is missing or malformed
    """
    if not header:
        return None
    parts = header.strip().split(".")
    if len(parts) < 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


def quote_path_segment(value: str) -> str:
    """
    Percent-encode a bucket, entry, token or replication name for a URL path.

    Every reserved character is escaped, including ``/``, ``?`` and ``#``.
    """
    return quote(value, safe="")


def build_path_with_params(path: str, params: Mapping[str, object | None]) -> str:
    """
    Append query parameters to a request path.

    None values are omitted. Booleans are sent as ``true``/``false``.

    Args:
        path: The request path (relative to the API prefix)
        params: Query parameters to add

    Returns:
        Path with query string
    """
    resolved: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            resolved[key] = "true" if value else "false"
        else:
            resolved[key] = str(value)

    if not resolved:
        return path
    return f"{path}?{urlencode(resolved)}"
