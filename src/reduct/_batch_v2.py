"""
Batch protocol v2: several entries per request with delta-encoded metadata.

Records of one entry are diffed against the previous record of the same entry,
so decoding threads a mapping of entry index to last known metadata through
the headers of a response.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from reduct._codec import (
    ErrorHeader,
    LabelNames,
    RecordHeader,
    RecordMeta,
    build_label_delta,
    classify_v2_headers,
    control_values,
    format_header_list,
    format_v2_header,
    parse_header_list,
    parse_int,
    parse_v2_header,
)
from reduct._errors import ApiError, InvalidOperation, ProtocolError
from reduct._reader import BatchStreamReader, poll_batched_records
from reduct._types import (
    DEFAULT_CONTENT_TYPE,
    ENTRIES_HEADER,
    ERROR_HEADER,
    HEADER_PREFIX,
    LABELS_HEADER,
    LAST_HEADER,
    QUERY_ID_HEADER,
    START_TS_HEADER,
    BatchType,
    PendingRecord,
)
from reduct._util import quote_path_segment
from reduct.record import Record

if TYPE_CHECKING:
    from reduct._http import HttpClient

logger = logging.getLogger(__name__)

# Last decoded metadata per entry index
EntryState = Mapping[int, RecordMeta]


def _required(controls: Mapping[str, str], name: str) -> str:
    value = controls.get(name)
    if value is None:
        raise ProtocolError(f"{name} header is required")
    return value


def _entry_name(entries: Sequence[str], index: int, delta: int) -> str:
    if index >= len(entries) or not entries[index]:
        raise ProtocolError(
            f"Invalid header '{HEADER_PREFIX}{index}-{delta}': entry index out of range"
        )
    return entries[index]


def apply_record_header(
    state: EntryState,
    header: RecordHeader,
    label_names: Sequence[str] | None = None,
) -> tuple[RecordMeta, dict[int, RecordMeta]]:
    """
    Decode one record header against the state of its entry.

    Args:
        state: Last metadata per entry index
        header: The record header to decode
        label_names: Names from ``x-reduct-labels``, if sent

    Returns:
        The absolute metadata of the record and the updated state

    Raises:
        ProtocolError: If the header is malformed, or it is the first record of
            its entry and carries no content type
    """
    meta = parse_v2_header(header.value, state.get(header.entry_index), label_names)
    new_state = dict(state)
    new_state[header.entry_index] = meta
    return meta, new_state


def parse_batch_headers_v2(
    headers: Any,
) -> tuple[list[tuple[str, int, RecordMeta]], bool]:
    """
    Decode the record headers of a v2 batch. Error headers are ignored.

    Args:
        headers: Response headers

    Returns:
        ``(entry, timestamp, meta)`` triples ordered by entry index then
        timestamp, and whether the batch holds the last record of the query

    Raises:
        ProtocolError: If ``x-reduct-entries`` or ``x-reduct-start-ts`` is
            missing, an index is out of range or a header is malformed
    """
    classified = classify_v2_headers(headers, with_errors=False)
    controls = control_values(classified)

    entries = parse_header_list(_required(controls, ENTRIES_HEADER))
    start_ts = parse_int(
        _required(controls, START_TS_HEADER), START_TS_HEADER, signed=True
    )

    labels_header = controls.get(LABELS_HEADER)
    label_names = parse_header_list(labels_header) if labels_header else None

    frames = sorted(
        (h for h in classified if isinstance(h, RecordHeader)),
        key=lambda h: (h.entry_index, h.delta),
    )

    state: EntryState = {}
    records: list[tuple[str, int, RecordMeta]] = []
    for frame in frames:
        entry = _entry_name(entries, frame.entry_index, frame.delta)
        meta, state = apply_record_header(state, frame, label_names)
        records.append((entry, start_ts + frame.delta, meta))

    return records, controls.get(LAST_HEADER) == "true"


async def _read_batched_records(
    bucket: str,
    query_id: str,
    *,
    head: bool,
    http: HttpClient,
) -> AsyncIterator[Record]:
    path = f"/io/{quote_path_segment(bucket)}/read"
    request_headers = {QUERY_ID_HEADER: query_id}
    if head:
        resp = await http.head(path, request_headers)
    else:
        resp = await http.get(path, request_headers, stream=True)

    try:
        if resp.status == 204:
            raise ApiError(resp.headers.get(ERROR_HEADER) or "No content", status=204)

        # All headers are decoded before the first record is handed out
        frames, last_batch = parse_batch_headers_v2(resp.headers)
        logger.debug("Batch of %d records from %s", len(frames), bucket)

        reader = BatchStreamReader(None if head else resp.data)
        total = len(frames)
        for i, (entry, timestamp, meta) in enumerate(frames, start=1):
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


def fetch_and_parse_batch_v2(
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
    Read the records of a query with the v2 batch protocol.

    Takes the same arguments as fetch_and_parse_batch_v1(). The entry is only
    used for logging: each record takes its entry from ``x-reduct-entries``.
    """
    logger.debug("Reading query %s on %s (%s)", query_id, bucket, entry)
    return poll_batched_records(
        lambda: _read_batched_records(bucket, query_id, head=head, http=http),
        continue_query=continue_query,
        poll_interval=poll_interval,
    )


def _index_records(
    records: Iterable[PendingRecord],
) -> tuple[list[str], int, list[tuple[int, PendingRecord]]]:
    # Entry indexes follow first appearance in timestamp order
    by_time = sorted(records, key=lambda r: (r.timestamp, r.entry))
    entries: list[str] = []
    lookup: dict[str, int] = {}
    indexed: list[tuple[int, PendingRecord]] = []
    for record in by_time:
        if not record.entry:
            raise InvalidOperation("Entry name is required for batch protocol v2")
        idx = lookup.get(record.entry)
        if idx is None:
            idx = len(entries)
            lookup[record.entry] = idx
            entries.append(record.entry)
        indexed.append((idx, record))

    indexed.sort(key=lambda item: (item[0], item[1].timestamp))
    start_ts = by_time[0].timestamp if by_time else 0
    return entries, start_ts, indexed


def make_headers_v2(
    records: Iterable[PendingRecord], batch_type: BatchType
) -> tuple[dict[str, str], list[bytes]]:
    """
    Build the request headers of a v2 batch.

    WRITE records send their content type and labels only when they differ
    from the previous record of the same entry. UPDATE records are sent as
    ``0,,<label-ops>`` and REMOVE records as ``0``.

    Returns:
        Headers (without Content-Length) and the payloads in send order

    Raises:
        InvalidOperation: If a record has no entry name, or an UPDATE record
            changes no labels
    """
    headers: dict[str, str] = {}
    entries, start_ts, indexed = _index_records(records)

    headers[ENTRIES_HEADER] = format_header_list(entries)
    headers[START_TS_HEADER] = str(start_ts)

    label_names = LabelNames()
    previous: dict[int, PendingRecord] = {}
    payload: list[bytes] = []

    for idx, record in indexed:
        name = f"{HEADER_PREFIX}{idx}-{record.timestamp - start_ts}"

        if batch_type is BatchType.WRITE:
            payload.append(record.data)
            prev = previous.get(idx)
            content_type = record.content_type or DEFAULT_CONTENT_TYPE
            if prev is not None and prev.content_type == content_type:
                content_type = ""
            delta = build_label_delta(
                record.labels, prev.labels if prev else None, label_names
            )
            headers[name] = format_v2_header(len(record.data), content_type, delta)
            previous[idx] = record
        elif batch_type is BatchType.UPDATE:
            delta = build_label_delta(record.labels, None, label_names)
            if not delta:
                raise InvalidOperation(
                    f"No labels to update for record {record.timestamp} "
                    f"of entry '{record.entry}'"
                )
            headers[name] = format_v2_header(0, "", delta)
        else:
            headers[name] = format_v2_header(0, "", "")

    if len(label_names):
        headers[LABELS_HEADER] = label_names.to_header()

    headers["Content-Type"] = DEFAULT_CONTENT_TYPE
    return headers, payload


def parse_errors_from_headers_v2(headers: Any) -> dict[str, dict[int, ApiError]]:
    """
    Collect per-record errors of a v2 batch response.

    ``x-reduct-entries`` and ``x-reduct-start-ts`` are only needed when the
    response reports errors.

    Returns:
        Entry name -> timestamp -> error
    """
    classified = classify_v2_headers(headers)
    error_headers = [h for h in classified if isinstance(h, ErrorHeader)]
    if not error_headers:
        return {}

    controls = control_values(classified)
    entries = parse_header_list(_required(controls, ENTRIES_HEADER))
    start_ts = parse_int(
        _required(controls, START_TS_HEADER), START_TS_HEADER, signed=True
    )

    errors: dict[str, dict[int, ApiError]] = {}
    for h in error_headers:
        entry = _entry_name(entries, h.entry_index, h.delta)
        errors.setdefault(entry, {})[start_ts + h.delta] = ApiError(
            h.message, status=h.code
        )
    return errors
