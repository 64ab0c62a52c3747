"""
Core types for the ReductStore client.

This module defines the fundamental types and wire constants used throughout
the library.
"""

from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Timestamps are UNIX time in microseconds
Timestamp = int

# Anything the client accepts as a timestamp
TimestampLike = int | float | datetime | str

# Label values are sent as strings on the wire
LabelValue = str | int | float | bool
LabelMap = dict[str, LabelValue]

# Record payloads for writes
BodyLike = bytes | str | AsyncIterable[bytes]

# Body of a record being read
ByteStream = AsyncIterator[bytes]


class BatchType(Enum):
    """Operation a batch performs. Fixed when the batch is created."""

    WRITE = "write"
    UPDATE = "update"
    REMOVE = "remove"


# Protocol constants
HEADER_PREFIX = "x-reduct-"
ERROR_HEADER = "x-reduct-error"
ERROR_HEADER_PREFIX = "x-reduct-error-"
TIME_HEADER = "x-reduct-time"
TIME_HEADER_PREFIX = "x-reduct-time-"
LABEL_HEADER_PREFIX = "x-reduct-label-"
LAST_HEADER = "x-reduct-last"
API_HEADER = "x-reduct-api"
ENTRIES_HEADER = "x-reduct-entries"
START_TS_HEADER = "x-reduct-start-ts"
LABELS_HEADER = "x-reduct-labels"
QUERY_ID_HEADER = "x-reduct-query-id"

CONTROL_HEADERS = frozenset(
    {ENTRIES_HEADER, START_TS_HEADER, LABELS_HEADER, LAST_HEADER}
)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Multi-entry batch protocol (v2) needs at least this server API version
MULTI_ENTRY_API_VERSION = (1, 18)

API_PREFIX = "/api/v1"
DEFAULT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0


@dataclass(frozen=True, slots=True)
class PendingRecord:
    """
    A record waiting in a batch to be sent.

    Attributes:
        entry: Entry name (the batch's entry for single-entry batches)
        timestamp: UNIX timestamp in microseconds
        data: Payload (empty for UPDATE and REMOVE batches)
        content_type: Content type of the payload
        labels: Labels with string values
    """

    entry: str
    timestamp: Timestamp
    data: bytes = b""
    content_type: str = DEFAULT_CONTENT_TYPE
    labels: dict[str, str] = field(default_factory=dict)
