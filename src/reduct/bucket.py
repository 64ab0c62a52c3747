"""
Bucket - records, batches and queries of one bucket.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from reduct._batch_v1 import fetch_and_parse_batch_v1
from reduct._batch_v2 import fetch_and_parse_batch_v2
from reduct._codec import parse_int
from reduct._errors import InvalidOperation, ProtocolError
from reduct._query import QueryCursor, QueryOptions, QueryType
from reduct._types import (
    DEFAULT_CONTENT_TYPE,
    LABEL_HEADER_PREFIX,
    LAST_HEADER,
    MULTI_ENTRY_API_VERSION,
    TIME_HEADER,
    BatchType,
    LabelValue,
    TimestampLike,
)
from reduct._util import (
    build_path_with_params,
    label_value_to_str,
    quote_path_segment,
    unix_timestamp_from_any,
    unix_timestamp_now,
)
from reduct.batch import Batch, RecordBatch
from reduct.messages import BucketInfo, BucketSettings, EntryInfo, FullBucketInfo
from reduct.record import Record

if TYPE_CHECKING:
    from reduct._http import HttpClient, HttpResponse

logger = logging.getLogger(__name__)

# Lifetime of a query link when no expiry is given
DEFAULT_LINK_TTL = timedelta(days=1)


def _optional_ts(value: TimestampLike | None) -> int | None:
    return unix_timestamp_from_any(value) if value is not None else None


def _label_headers(labels: Mapping[str, LabelValue] | None) -> dict[str, str]:
    return {
        f"{LABEL_HEADER_PREFIX}{key}": label_value_to_str(value)
        for key, value in (labels or {}).items()
    }


async def _release_after(resp: HttpResponse) -> AsyncIterator[bytes]:
    try:
        async for chunk in resp.data:
            yield chunk
    finally:
        await resp.aclose()


def _record_from_response(entry: str, resp: HttpResponse, head: bool) -> Record:
    headers = resp.headers
    raw_ts = headers.get(TIME_HEADER)
    if raw_ts is None:
        raise ProtocolError(f"{TIME_HEADER} header is required")

    labels = {
        name[len(LABEL_HEADER_PREFIX) :]: value
        for name, value in headers.items()
        if name.lower().startswith(LABEL_HEADER_PREFIX)
    }
    return Record(
        entry=entry,
        timestamp=parse_int(raw_ts, "timestamp in header", signed=True),
        size=parse_int(headers.get("content-length", "0"), "content-length"),
        last=headers.get(LAST_HEADER) in ("1", "true"),
        content_type=headers.get("content-type"),
        labels=labels,
        stream=None if head or resp.data is None else _release_after(resp),
    )


class Bucket:
    """
    A bucket of a ReductStore instance.

    Buckets are obtained from ``Client.get_bucket()`` or
    ``Client.create_bucket()``; the constructor performs no IO.

    Args:
        name: Bucket name
        http: Transport shared with the client
    """

    def __init__(self, name: str, http: HttpClient) -> None:
        self._name = name
        self._http = http

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"Bucket(name={self._name!r})"

    def _path(self, entry: str | None = None) -> str:
        path = f"/b/{quote_path_segment(self._name)}"
        if entry is not None:
            path += f"/{quote_path_segment(entry)}"
        return path

    # ------------------------------------------------------------------------
    # Bucket management
    # ------------------------------------------------------------------------

    async def get_full_info(self) -> FullBucketInfo:
        """Get settings, statistics and entries of the bucket."""
        resp = await self._http.get(self._path())
        return FullBucketInfo.model_validate(resp.data)

    async def get_settings(self) -> BucketSettings:
        return (await self.get_full_info()).settings

    async def set_settings(self, settings: BucketSettings) -> None:
        await self._http.put(self._path(), settings)

    async def get_info(self) -> BucketInfo:
        return (await self.get_full_info()).info

    async def get_entry_list(self) -> list[EntryInfo]:
        return (await self.get_full_info()).entries

    async def remove(self) -> None:
        """Remove the bucket with all its entries."""
        await self._http.delete(self._path())

    async def rename(self, new_name: str) -> None:
        await self._http.put(f"{self._path()}/rename", {"new_name": new_name})
        self._name = new_name

    async def remove_entry(self, entry: str) -> None:
        await self._http.delete(self._path(entry))

    async def rename_entry(self, old_name: str, new_name: str) -> None:
        await self._http.put(
            f"{self._path(old_name)}/rename", {"new_name": new_name}
        )

    # ------------------------------------------------------------------------
    # Single records
    # ------------------------------------------------------------------------

    async def write(
        self,
        entry: str,
        data: bytes | str | AsyncIterable[bytes],
        timestamp: TimestampLike | None = None,
        content_type: str | None = None,
        labels: Mapping[str, LabelValue] | None = None,
        content_length: int | None = None,
    ) -> None:
        """
        Write one record.

        Args:
            entry: Entry name (created on first write)
            data: Payload, or an async byte stream together with content_length
            timestamp: Timestamp of the record, now if omitted
            content_type: Defaults to ``application/octet-stream``
            labels: Labels of the record
            content_length: Payload size, required for streamed payloads

        Raises:
            ValueError: If a streamed payload has no content_length
            ConflictError: If a record with this timestamp exists
        """
        ts = _optional_ts(timestamp)
        if ts is None:
            ts = unix_timestamp_now()
        headers = {
            "Content-Type": content_type or DEFAULT_CONTENT_TYPE,
            **_label_headers(labels),
        }
        if isinstance(data, AsyncIterable):
            if content_length is None:
                raise ValueError("content_length is required for streamed payloads")
            headers["Content-Length"] = str(content_length)
        elif content_length is not None:
            headers["Content-Length"] = str(content_length)

        path = build_path_with_params(self._path(entry), {"ts": ts})
        await self._http.post(path, data, headers)

    async def read(
        self,
        entry: str,
        timestamp: TimestampLike | None = None,
        head: bool = False,
    ) -> Record:
        """
        Read one record.

        Read the body of the returned record to release the connection.

        Args:
            entry: Entry name
            timestamp: Timestamp of the record, the latest record if omitted
            head: Fetch metadata only

        Raises:
            NotFoundError: If the entry or record does not exist
        """
        path = build_path_with_params(
            self._path(entry), {"ts": _optional_ts(timestamp)}
        )
        if head:
            resp = await self._http.head(path)
        else:
            resp = await self._http.get(path, stream=True)
        try:
            return _record_from_response(entry, resp, head)
        except ProtocolError:
            await resp.aclose()
            raise

    async def update(
        self,
        entry: str,
        timestamp: TimestampLike,
        labels: Mapping[str, LabelValue],
    ) -> None:
        """Update labels of one record. An empty value removes the label."""
        path = build_path_with_params(
            self._path(entry), {"ts": unix_timestamp_from_any(timestamp)}
        )
        await self._http.patch(path, None, _label_headers(labels))

    async def remove_record(self, entry: str, timestamp: TimestampLike) -> None:
        path = build_path_with_params(
            self._path(entry), {"ts": unix_timestamp_from_any(timestamp)}
        )
        await self._http.delete(path)

    # ------------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------------

    def begin_write_batch(self, entry: str) -> Batch:
        """Start a batch of records to write to one entry."""
        return Batch(self._name, entry, self._http, BatchType.WRITE)

    def begin_update_batch(self, entry: str) -> Batch:
        """Start a batch of label updates for one entry."""
        return Batch(self._name, entry, self._http, BatchType.UPDATE)

    def begin_remove_batch(self, entry: str) -> Batch:
        """Start a batch of records to remove from one entry."""
        return Batch(self._name, entry, self._http, BatchType.REMOVE)

    def begin_write_record_batch(self) -> RecordBatch:
        """Start a batch of records to write to several entries (API >= 1.18)."""
        return RecordBatch(self._name, self._http, BatchType.WRITE)

    def begin_update_record_batch(self) -> RecordBatch:
        """Start a batch of label updates across entries (API >= 1.18)."""
        return RecordBatch(self._name, self._http, BatchType.UPDATE)

    def begin_remove_record_batch(self) -> RecordBatch:
        """Start a batch of records to remove across entries (API >= 1.18)."""
        return RecordBatch(self._name, self._http, BatchType.REMOVE)

    # ------------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------------

    async def _multi_entry_supported(self) -> bool:
        if self._http.api_version is None:
            await self._http.head("/alive")
        version = self._http.api_version
        return version is not None and version >= MULTI_ENTRY_API_VERSION

    async def _create_query(
        self,
        query_type: QueryType,
        entries: list[str],
        start: TimestampLike | None,
        stop: TimestampLike | None,
        options: QueryOptions,
    ) -> tuple[bool, dict[str, Any]]:
        start_ts, stop_ts = _optional_ts(start), _optional_ts(stop)
        if await self._multi_entry_supported():
            body = options.serialize(query_type, start_ts, stop_ts, entries)
            path = f"/io/{quote_path_segment(self._name)}/q"
            resp = await self._http.post(path, body)
            return True, resp.data

        if len(entries) != 1:
            raise InvalidOperation(
                "Querying several entries requires API version >= "
                f"{MULTI_ENTRY_API_VERSION[0]}.{MULTI_ENTRY_API_VERSION[1]}"
            )
        body = options.serialize(query_type, start_ts, stop_ts)
        resp = await self._http.post(f"{self._path(entries[0])}/q", body)
        return False, resp.data

    async def query(
        self,
        entry: str | Sequence[str],
        start: TimestampLike | None = None,
        stop: TimestampLike | None = None,
        options: QueryOptions | None = None,
    ) -> QueryCursor:
        """
        Query records.

        Args:
            entry: Entry name, or several names (API >= 1.18)
            start: Start of the time range (inclusive)
            stop: End of the time range (exclusive)
            options: Query options

        Returns:
            A cursor over the matching records

        Raises:
            InvalidOperation: If several entries are queried on an older server

        Example:
            >>> cursor = await bucket.query("sensor", start, stop, QueryOptions(ttl=60))
            >>> async for record in cursor:
            ...     print(record.timestamp, await record.read())
        """
        entries = [entry] if isinstance(entry, str) else list(entry)
        options = options or QueryOptions()

        multi_entry, data = await self._create_query(
            QueryType.QUERY, entries, start, stop, options
        )
        query_id = str(data["id"])
        logger.debug(
            "Created query %s on %s/%s (protocol v%d)",
            query_id,
            self._name,
            ",".join(entries),
            2 if multi_entry else 1,
        )

        parser = fetch_and_parse_batch_v2 if multi_entry else fetch_and_parse_batch_v1
        records = parser(
            self._name,
            entries[0] if len(entries) == 1 else ",".join(entries),
            query_id,
            continue_query=options.continuous,
            poll_interval=options.poll_interval,
            head=options.head,
            http=self._http,
        )
        return QueryCursor(query_id, records)

    async def remove_query(
        self,
        entry: str | Sequence[str],
        start: TimestampLike | None = None,
        stop: TimestampLike | None = None,
        options: QueryOptions | None = None,
    ) -> int:
        """
        Remove the records matching a query.

        Returns:
            Number of removed records
        """
        entries = [entry] if isinstance(entry, str) else list(entry)
        _, data = await self._create_query(
            QueryType.REMOVE, entries, start, stop, options or QueryOptions()
        )
        return int(data["removed_records"])

    async def create_query_link(
        self,
        entry: str | Sequence[str],
        start: TimestampLike | None = None,
        stop: TimestampLike | None = None,
        options: QueryOptions | None = None,
        index: int = 0,
        expire_at: datetime | None = None,
        file_name: str | None = None,
        base_url: str | None = None,
    ) -> str:
        """
        Create a public link to one record of a query.

        Args:
            entry: Entry name, or several names
            start: Start of the time range
            stop: End of the time range
            options: Query options
            index: Position of the record in the query result
            expire_at: Expiry of the link, one day from now if omitted
            file_name: File name shown in the link
            base_url: Base URL of the link, the server URL if omitted

        Returns:
            The link
        """
        entries = [entry] if isinstance(entry, str) else list(entry)
        options = options or QueryOptions()
        if expire_at is None:
            expire_at = datetime.now(timezone.utc) + DEFAULT_LINK_TTL

        body = {
            "bucket": self._name,
            "entry": entries[0] if len(entries) == 1 else self._name,
            "index": index,
            "query": options.serialize(
                QueryType.QUERY,
                _optional_ts(start),
                _optional_ts(stop),
                entries if len(entries) > 1 else None,
            ),
            "expire_at": int(expire_at.timestamp()),
        }
        if base_url is not None:
            body["base_url"] = base_url

        path = f"/links/{quote_path_segment(file_name)}" if file_name else "/links"
        resp = await self._http.post(path, body)
        return str(resp.data["link"])
