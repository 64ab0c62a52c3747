"""
Batch protocol v1: one entry per request, metadata restated on every record.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from typing import TYPE_CHECKING, Any

from reduct._codec import (
    ErrorHeader,
    RecordHeader,
    RecordMeta,
    classify_v1_headers,
    control_values,
    format_v1_header,
    parse_v1_header,
)
from reduct._errors import ApiError
from reduct._reader import BatchStreamReader, poll_batched_records
from reduct._types import (
    DEFAULT_CONTENT_TYPE,
    ERROR_HEADER,
    LAST_HEADER,
    TIME_HEADER_PREFIX,
    BatchType,
    PendingRecord,
)
from reduct._util import build_path_with_params, quote_path_segment
from reduct.record import Record

if TYPE_CHECKING:
    from reduct._http import HttpClient

logger = logging.getLogger(__name__)


def parse_batch_headers_v1(headers: Any) -> tuple[list[tuple[int, RecordMeta]], bool]:
    """
    Decode the record headers of a v1 batch. Error headers are ignored.

    Args:
        headers: Response headers

    Returns:
        ``(timestamp, meta)`` pairs in timestamp order, and whether the batch
        holds the last record of the query
    """
    classified = classify_v1_headers(headers, with_errors=False)
    frames = sorted(
        (h for h in classified if isinstance(h, RecordHeader)),
        key=lambda h: h.delta,
    )
    last = control_values(classified).get(LAST_HEADER) == "true"
    return [(frame.delta, parse_v1_header(frame.value)) for frame in frames], last


async def _read_batched_records(
    bucket: str,
    entry: str,
    query_id: str,
    *,
    head: bool,
    http: HttpClient,
) -> AsyncIterator[Record]:
    path = build_path_with_params(
        f"/b/{quote_path_segment(bucket)}/{quote_path_segment(entry)}/batch",
        {"q": query_id},
    )
    resp = await http.head(path) if head else await http.get(path, stream=True)

    try:
        if resp.status == 204:
            raise ApiError(resp.headers.get(ERROR_HEADER) or "No content", status=204)

        # All headers are decoded before the first record is handed out
        frames, last_batch = parse_batch_headers_v1(resp.headers)
        logger.debug("Batch of %d records from %s/%s", len(frames), bucket, entry)

        reader = BatchStreamReader(None if head else resp.data)
        total = len(frames)
        for i, (timestamp, meta) in enumerate(frames, start=1):
            last_in_batch = i == total
            stream = await reader.create_stream(meta.content_length, last_in_batch)
            yield Record(
                entry=entry,
                timestamp=timestamp,
                size=meta.content_length,
                last=last_batch and last_in_batch,
                content_type=meta.content_type,
                labels=meta.labels,
                stream=stream,
            )
    finally:
        await resp.aclose()


def fetch_and_parse_batch_v1(
    bucket: str,
    entry: str,
    query_id: str,
    *,
    continue_query: bool,
    poll_interval: float,
    head: bool,
    http: HttpClient,
) -> AsyncIterator[Record]:
    """
    Read the records of a query with the v1 batch protocol.

    Args:
        bucket: Bucket name
        entry: Entry the query was created for
        query_id: Server-assigned query id
        continue_query: Keep polling when the server has no data yet
        poll_interval: Seconds between polls
        head: Fetch metadata only (HEAD requests, empty bodies)
        http: Transport

    Returns:
        Lazy sequence of records, ending after the last record of the query
    """
    return poll_batched_records(
        lambda: _read_batched_records(bucket, entry, query_id, head=head, http=http),
        continue_query=continue_query,
        poll_interval=poll_interval,
    )


def make_headers_v1(
    records: Iterable[PendingRecord], batch_type: BatchType
) -> tuple[dict[str, str], list[bytes]]:
    """
    Build the request headers of a v1 batch.

    WRITE records restate their size, content type and labels. UPDATE records
    are sent as ``0,,<labels>`` and REMOVE records as ``0,``.

    Returns:
        Headers (without Content-Length) and the payloads in send order
    """
    headers: dict[str, str] = {}
    payload: list[bytes] = []
    for record in records:
        name = f"{TIME_HEADER_PREFIX}{record.timestamp}"
        if batch_type is BatchType.WRITE:
            payload.append(record.data)
            headers[name] = format_v1_header(
                len(record.data), record.content_type, record.labels
            )
        elif batch_type is BatchType.UPDATE:
            headers[name] = format_v1_header(0, "", record.labels)
        else:
            headers[name] = format_v1_header(0, "", {})

    headers["Content-Type"] = DEFAULT_CONTENT_TYPE
    return headers, payload


def parse_errors_from_headers_v1(headers: Any) -> dict[int, ApiError]:
    """Collect per-record errors (``x-reduct-error-<ts>``) of a v1 batch response."""
    return {
        h.delta: ApiError(h.message, status=h.code)
        for h in classify_v1_headers(headers)
        if isinstance(h, ErrorHeader)
    }
