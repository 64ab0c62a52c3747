"""
ReductStore Python Client

An asynchronous client library for ReductStore, a time-series object storage.

This package writes and reads time-stamped records with labels, batches many
records into one request and iterates over server-side queries.

Example usage:
    >>> from reduct import Client, QueryOptions
    >>>
    >>> async with Client("http://localhost:8383") as client:
    ...     bucket = await client.get_or_create_bucket("sensors")
    ...     batch = bucket.begin_write_record_batch()
    ...     batch.add("temperature", 1_000_000, b"21.5")
    ...     batch.add("humidity", 1_000_000, b"40")
    ...     errors = await batch.send()
    ...
    ...     cursor = await bucket.query(["temperature", "humidity"], 0)
    ...     async for record in cursor:
    ...         print(record.entry, record.timestamp, await record.read())
"""

from importlib.metadata import PackageNotFoundError, version

from reduct._errors import (
    ApiError,
    ConflictError,
    InvalidOperation,
    NotFoundError,
    ProtocolError,
    ReductError,
    StreamConsumedError,
    TransportError,
    UnauthorizedError,
    UnexpectedEndOfStream,
)
from reduct._query import CursorState, QueryCursor, QueryOptions
from reduct._types import BatchType, LabelMap, LabelValue, Timestamp, TimestampLike
from reduct.batch import Batch, RecordBatch
from reduct.bucket import Bucket
from reduct.client import Client
from reduct.messages import (
    BucketInfo,
    BucketSettings,
    Defaults,
    Diagnostics,
    DiagnosticsError,
    DiagnosticsItem,
    EntryInfo,
    FullBucketInfo,
    FullReplicationInfo,
    LicenseInfo,
    QuotaType,
    ReplicationInfo,
    ReplicationMode,
    ReplicationSettings,
    ServerInfo,
    Status,
    Token,
    TokenCreateResponse,
    TokenPermissions,
)
from reduct.record import Record

__all__ = [
    # Types
    "BatchType",
    "LabelMap",
    "LabelValue",
    "Timestamp",
    "TimestampLike",
    # Errors
    "ReductError",
    "ApiError",
    "NotFoundError",
    "ConflictError",
    "UnauthorizedError",
    "TransportError",
    "ProtocolError",
    "UnexpectedEndOfStream",
    "InvalidOperation",
    "StreamConsumedError",
    # Client classes
    "Client",
    "Bucket",
    "Batch",
    "RecordBatch",
    "Record",
    "QueryCursor",
    "QueryOptions",
    "CursorState",
    # Messages
    "ServerInfo",
    "LicenseInfo",
    "Defaults",
    "BucketSettings",
    "QuotaType",
    "BucketInfo",
    "EntryInfo",
    "FullBucketInfo",
    "Status",
    "Token",
    "TokenPermissions",
    "TokenCreateResponse",
    "ReplicationInfo",
    "ReplicationSettings",
    "ReplicationMode",
    "FullReplicationInfo",
    "Diagnostics",
    "DiagnosticsItem",
    "DiagnosticsError",
]

# Use importlib.metadata for version (works with installed package)
# Fall back to hard-coded version for editable installs
try:
    __version__ = version("reduct-py")
except PackageNotFoundError:
    __version__ = "0.1.0"
