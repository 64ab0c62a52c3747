"""
Batches - send many records in one request.

A batch is created for one operation (write, label update or removal) and only
accepts records for that operation. ``Batch`` uses the single-entry protocol
v1, ``RecordBatch`` the multi-entry protocol v2 (server API 1.18 or newer).

Example:
    >>> batch = bucket.begin_write_record_batch()
    >>> batch.add("temperature", 1_000_000, b"21.5", labels={"room": "kitchen"})
    >>> batch.add("humidity", 1_000_000, b"40")
    >>> errors = await batch.send()
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Hashable, Mapping
from typing import TYPE_CHECKING

from reduct._batch_v1 import make_headers_v1, parse_errors_from_headers_v1
from reduct._batch_v2 import make_headers_v2, parse_errors_from_headers_v2
from reduct._errors import ApiError, InvalidOperation
from reduct._types import (
    DEFAULT_CONTENT_TYPE,
    MULTI_ENTRY_API_VERSION,
    BatchType,
    LabelValue,
    PendingRecord,
    TimestampLike,
)
from reduct._util import (
    normalize_labels,
    quote_path_segment,
    unix_timestamp_from_any,
)

if TYPE_CHECKING:
    from reduct._http import HttpClient

logger = logging.getLogger(__name__)

_METHODS = {
    BatchType.WRITE: "POST",
    BatchType.UPDATE: "PATCH",
    BatchType.REMOVE: "DELETE",
}


def _to_bytes(data: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise TypeError(f"Record data must be bytes or str, not {type(data).__name__}")


async def _iter_payload(chunks: list[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        if chunk:
            yield chunk


class _BaseBatch:
    """Accumulator shared by both batch protocols."""

    def __init__(self, bucket: str, http: HttpClient, batch_type: BatchType) -> None:
        self._bucket = bucket
        self._http = http
        self._batch_type = batch_type
        self._records: dict[Hashable, PendingRecord] = {}
        self._size = 0
        self._last_access = 0.0

    @property
    def batch_type(self) -> BatchType:
        return self._batch_type

    def _require(self, batch_type: BatchType, method: str) -> None:
        if self._batch_type is not batch_type:
            raise InvalidOperation(
                f"{method}() is not allowed for a {self._batch_type.value} batch"
            )

    def _put(self, key: Hashable, record: PendingRecord) -> None:
        previous = self._records.get(key)
        if previous is not None:
            self._size -= len(previous.data)
        self._records[key] = record
        self._size += len(record.data)
        self._last_access = time.time()

    def _validate(self) -> None:
        for record in self._records.values():
            if self._batch_type is not BatchType.WRITE and record.data:
                raise InvalidOperation(
                    f"A {self._batch_type.value} batch must not carry payloads"
                )
            if self._batch_type is BatchType.REMOVE and record.labels:
                raise InvalidOperation("A remove batch must not carry labels")
            if self._batch_type is BatchType.UPDATE and not record.labels:
                raise InvalidOperation(
                    f"No labels to update for record {record.timestamp}"
                )

    async def _send(
        self, path: str, headers: dict[str, str], payload: list[bytes]
    ) -> Mapping[str, str]:
        content_length = sum(len(chunk) for chunk in payload)
        headers["Content-Length"] = str(content_length)
        body = _iter_payload(payload) if content_length else None

        logger.debug(
            "Sending %s batch of %d records (%d bytes) to %s",
            self._batch_type.value,
            len(self._records),
            content_length,
            path,
        )
        resp = await self._http.request(
            _METHODS[self._batch_type], path, body, headers
        )
        return resp.headers

    def items(self) -> list[tuple[Hashable, PendingRecord]]:
        """Pending records with their keys, in key order."""
        return sorted(self._records.items(), key=lambda item: item[0])

    def size(self) -> int:
        """Total payload size in bytes."""
        return self._size

    def record_count(self) -> int:
        return len(self._records)

    def last_access(self) -> float:
        """UNIX time in seconds of the last add, 0 if empty since clear()."""
        return self._last_access

    def clear(self) -> None:
        """Drop all pending records."""
        self._records.clear()
        self._size = 0
        self._last_access = 0.0


class Batch(_BaseBatch):
    """
    Batch of records for one entry (protocol v1).

    Records are keyed by timestamp: adding a record with the same timestamp
    replaces the pending one.

    Args:
        bucket: Bucket name
        entry: Entry name
        http: Transport
        batch_type: Operation of the batch
    """

    def __init__(
        self,
        bucket: str,
        entry: str,
        http: HttpClient,
        batch_type: BatchType = BatchType.WRITE,
    ) -> None:
        super().__init__(bucket, http, batch_type)
        self._entry = entry

    @property
    def entry(self) -> str:
        return self._entry

    def add(
        self,
        timestamp: TimestampLike,
        data: bytes | str,
        content_type: str | None = None,
        labels: Mapping[str, LabelValue] | None = None,
    ) -> None:
        """
        Add a record to a write batch.

        Args:
            timestamp: Timestamp of the record (int microseconds, float seconds,
                datetime or ISO string)
            data: Payload
            content_type: Defaults to ``application/octet-stream``
            labels: Labels of the record

        Raises:
            InvalidOperation: If this is not a write batch
        """
        self._require(BatchType.WRITE, "add")
        ts = unix_timestamp_from_any(timestamp)
        self._put(
            ts,
            PendingRecord(
                entry=self._entry,
                timestamp=ts,
                data=_to_bytes(data),
                content_type=content_type or DEFAULT_CONTENT_TYPE,
                labels=normalize_labels(labels),
            ),
        )

    def add_only_labels(
        self, timestamp: TimestampLike, labels: Mapping[str, LabelValue]
    ) -> None:
        """
        Add a label update to an update batch. An empty value removes the label.

        Raises:
            InvalidOperation: If this is not an update batch
        """
        self._require(BatchType.UPDATE, "add_only_labels")
        ts = unix_timestamp_from_any(timestamp)
        self._put(
            ts,
            PendingRecord(
                entry=self._entry, timestamp=ts, labels=normalize_labels(labels)
            ),
        )

    def add_only_timestamp(self, timestamp: TimestampLike) -> None:
        """
        Add a record to remove to a remove batch.

        Raises:
            InvalidOperation: If this is not a remove batch
        """
        self._require(BatchType.REMOVE, "add_only_timestamp")
        ts = unix_timestamp_from_any(timestamp)
        self._put(ts, PendingRecord(entry=self._entry, timestamp=ts))

    async def write(self) -> dict[int, ApiError]:
        """
        Send the batch in one request.

        Returns:
            Timestamp -> error for every record the server rejected

        Raises:
            InvalidOperation: If the batch holds records invalid for its type
            ApiError: If the whole request failed
        """
        self._validate()
        records = [record for _, record in self.items()]
        headers, payload = make_headers_v1(records, self._batch_type)
        response_headers = await self._send(
            f"/b/{quote_path_segment(self._bucket)}/"
            f"{quote_path_segment(self._entry)}/batch",
            headers,
            payload,
        )
        return parse_errors_from_headers_v1(response_headers)


class RecordBatch(_BaseBatch):
    """
    Batch of records spanning the entries of one bucket (protocol v2).

    Records are keyed by ``(entry, timestamp)``: adding a record with the same
    key replaces the pending one.

    Args:
        bucket: Bucket name
        http: Transport
        batch_type: Operation of the batch
    """

    def __init__(
        self,
        bucket: str,
        http: HttpClient,
        batch_type: BatchType = BatchType.WRITE,
    ) -> None:
        super().__init__(bucket, http, batch_type)

    @staticmethod
    def is_supported(api_version: tuple[int, int] | None) -> bool:
        """
        Whether a server speaks the multi-entry protocol.

        An unknown version is assumed to be supported.
        """
        return api_version is None or api_version >= MULTI_ENTRY_API_VERSION

    def add(
        self,
        entry: str,
        timestamp: TimestampLike,
        data: bytes | str,
        content_type: str | None = None,
        labels: Mapping[str, LabelValue] | None = None,
    ) -> None:
        """
        Add a record to a write batch.

        Args:
            entry: Entry name
            timestamp: Timestamp of the record
            data: Payload
            content_type: Defaults to ``application/octet-stream``
            labels: Labels of the record, values must not be empty

        Raises:
            InvalidOperation: If this is not a write batch, or a label value is
                empty (an empty value means "removed" in this protocol)
        """
        self._require(BatchType.WRITE, "add")
        ts = unix_timestamp_from_any(timestamp)
        normalized = normalize_labels(labels)
        empty = sorted(key for key, value in normalized.items() if not value)
        if empty:
            raise InvalidOperation(
                f"Empty label values cannot be written in a record batch: {empty}"
            )
        self._put(
            (entry, ts),
            PendingRecord(
                entry=entry,
                timestamp=ts,
                data=_to_bytes(data),
                content_type=content_type or DEFAULT_CONTENT_TYPE,
                labels=normalized,
            ),
        )

    def add_only_labels(
        self, entry: str, timestamp: TimestampLike, labels: Mapping[str, LabelValue]
    ) -> None:
        """
        Add a label update to an update batch. An empty value removes the label.

        Raises:
            InvalidOperation: If this is not an update batch
        """
        self._require(BatchType.UPDATE, "add_only_labels")
        ts = unix_timestamp_from_any(timestamp)
        self._put(
            (entry, ts),
            PendingRecord(entry=entry, timestamp=ts, labels=normalize_labels(labels)),
        )

    def add_only_timestamp(self, entry: str, timestamp: TimestampLike) -> None:
        """
        Add a record to remove to a remove batch.

        Raises:
            InvalidOperation: If this is not a remove batch
        """
        self._require(BatchType.REMOVE, "add_only_timestamp")
        ts = unix_timestamp_from_any(timestamp)
        self._put((entry, ts), PendingRecord(entry=entry, timestamp=ts))

    async def send(self) -> dict[str, dict[int, ApiError]]:
        """
        Send the batch in one request.

        Returns:
            Entry -> timestamp -> error for every record the server rejected

        Raises:
            InvalidOperation: If the server is older than API 1.18, or the
                batch holds records invalid for its type
            ApiError: If the whole request failed
        """
        if not self.is_supported(self._http.api_version):
            major, minor = MULTI_ENTRY_API_VERSION
            raise InvalidOperation(
                "Multi-entry batch API is not supported by the server. "
                f"Requires API version >= {major}.{minor}."
            )

        self._validate()
        headers, payload = make_headers_v2(
            self._records.values(), self._batch_type
        )
        response_headers = await self._send(
            f"/io/{quote_path_segment(self._bucket)}/{self._batch_type.value}",
            headers,
            payload,
        )
        return parse_errors_from_headers_v2(response_headers)
