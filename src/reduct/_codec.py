"""
Header codec for the batched record protocol.

A batch carries one header per record. Protocol v1 restates size, content type
and labels on every header::

    x-reduct-time-<ts>: <size>,<content-type>[,<label>=<value>]*

Protocol v2 indexes entries and label names and only sends what changed since
the previous record of the same entry::

    x-reduct-entries: <entry>,<entry>,...
    x-reduct-start-ts: <ts>
    x-reduct-labels: <name>,<name>,...
    x-reduct-<entry-index>-<ts - start-ts>: <size>[,<content-type>][,<label-ops>]
    x-reduct-error-<entry-index>-<ts - start-ts>: <code>,<message>

Entry and label names are percent-escaped. Label values are wrapped in double
quotes when they contain a comma, and are never escaped otherwise.
"""

from __future__ import annotations

import string
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from reduct._errors import ProtocolError
from reduct._types import (
    CONTROL_HEADERS,
    DEFAULT_CONTENT_TYPE,
    ERROR_HEADER_PREFIX,
    HEADER_PREFIX,
    LAST_HEADER,
    TIME_HEADER_PREFIX,
)

# RFC 9110 token characters
_TCHAR_BYTES = frozenset(
    (string.ascii_letters + string.digits + "!#$%&'*+-.^_`|~").encode("ascii")
)
_HEX_DIGITS = frozenset(string.hexdigits)


# ============================================================================
# Components
# ============================================================================


def encode_component(value: str) -> str:
    """
    Percent-encode every UTF-8 byte that is not an HTTP token character.

    Args:
        value: Entry or label name

    Returns:
        Header-safe representation (``%XX`` uppercase hex for escaped bytes)
    """
    parts: list[str] = []
    for byte in value.encode("utf-8"):
        if byte in _TCHAR_BYTES:
            parts.append(chr(byte))
        else:
            parts.append(f"%{byte:02X}")
    return "".join(parts)


def decode_component(encoded: str) -> str:
    """
    Inverse of encode_component().

    Raises:
        ProtocolError: On a ``%`` not followed by two hex digits, or bytes that
            are not valid UTF-8
    """
    buffer = bytearray()
    i = 0
    length = len(encoded)
    while i < length:
        ch = encoded[i]
        if ch == "%":
            hex_part = encoded[i + 1 : i + 3]
            if len(hex_part) != 2 or not set(hex_part) <= _HEX_DIGITS:
                raise ProtocolError(f"Invalid encoding in header value: '{encoded}'")
            buffer.append(int(hex_part, 16))
            i += 3
        else:
            buffer.extend(ch.encode("utf-8"))
            i += 1

    try:
        return buffer.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Invalid encoding in header value: '{encoded}'") from e


def format_header_list(names: Iterable[str]) -> str:
    """Join names into an ``x-reduct-entries``/``x-reduct-labels`` value."""
    return ",".join(encode_component(name) for name in names)


def parse_header_list(header: str) -> list[str]:
    """
    Split an ``x-reduct-entries``/``x-reduct-labels`` value into names.

    An empty value is an empty list.
    """
    trimmed = header.strip()
    if not trimmed:
        return []
    return [decode_component(item.strip()) for item in trimmed.split(",")]


def parse_int(value: str, what: str = "batched header", *, signed: bool = False) -> int:
    """
    Parse a decimal integer from a header, raising ProtocolError.

    Only ASCII digits are accepted, with a leading ``-`` when ``signed``.
    """
    text = value.strip()
    digits = text[1:] if signed and text.startswith("-") else text
    if not _is_decimal(digits):
        raise ProtocolError(f"Invalid {what}: '{value}'")
    return int(text)


def format_label_value(value: str) -> str:
    """Quote a label value if it contains a comma."""
    if "," in value:
        return f'"{value}"'
    return value


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def _split_unquoted(row: str) -> list[str]:
    # A quote toggles quoting until the next quote, commas inside are kept
    items: list[str] = []
    current: list[str] = []
    quoted = False
    for ch in row:
        if ch == '"':
            quoted = not quoted
            current.append(ch)
        elif ch == "," and not quoted:
            items.append("".join(current))
            current = []
        else:
            current.append(ch)
    items.append("".join(current))
    return items


# ============================================================================
# Protocol v1 record headers
# ============================================================================


@dataclass(frozen=True, slots=True)
class RecordMeta:
    """
    Absolute metadata of one framed record.

    Attributes:
        content_length: Size of the record payload in bytes
        content_type: Content type of the record
        labels: Labels of the record (string values)
    """

    content_length: int
    content_type: str
    labels: dict[str, str] = field(default_factory=dict)


def format_v1_header(size: int, content_type: str, labels: Mapping[str, str]) -> str:
    """
    Build a v1 record header value ``<size>,<content-type>[,<key>=<value>]*``.

    Labels are written in key order.
    """
    parts = [str(size), content_type]
    for key in sorted(labels):
        parts.append(f"{key}={format_label_value(labels[key])}")
    return ",".join(parts)


def parse_v1_header(value: str) -> RecordMeta:
    """
    Parse a v1 record header value.

    Items without ``=`` after the content type are ignored. A value that
    contains an unbalanced ``"`` swallows the rest of the row.

    Raises:
        ProtocolError: If the size is not an integer
    """
    items = _split_unquoted(value)
    size = parse_int(items[0])
    content_type = items[1].strip() if len(items) > 1 else ""

    labels: dict[str, str] = {}
    for item in items[2:]:
        key, sep, raw = item.partition("=")
        if not sep:
            continue
        labels[key.strip()] = _unquote(raw.strip())

    return RecordMeta(
        content_length=size,
        content_type=content_type or DEFAULT_CONTENT_TYPE,
        labels=labels,
    )


# ============================================================================
# Protocol v2 label deltas
# ============================================================================


class LabelNames:
    """
    Interning table for label names sent in ``x-reduct-labels``.

    Names get an index in first-seen order.
    """

    def __init__(self) -> None:
        self._index: dict[str, int] = {}
        self.names: list[str] = []

    def intern(self, name: str) -> int:
        idx = self._index.get(name)
        if idx is None:
            idx = len(self.names)
            self._index[name] = idx
            self.names.append(name)
        return idx

    def __len__(self) -> int:
        return len(self.names)

    def to_header(self) -> str:
        return format_header_list(self.names)


def build_label_delta(
    labels: Mapping[str, str],
    previous: Mapping[str, str] | None,
    label_names: LabelNames | None = None,
) -> str:
    """
    Encode the label changes against the previous record of the same entry.

    Keys are visited in lexicographic order. A key present before and absent
    now is sent with an empty value. Without a previous record all labels are
    sent. With an interning table keys are sent as indexes, ordered by index.

    Args:
        labels: Current labels
        previous: Labels emitted for the previous record of the entry, or None
        label_names: Interning table, or None to send raw names

    Returns:
        Comma separated ``key=value`` operations (empty if nothing changed)
    """
    ops: list[tuple[int | str, str]] = []

    if previous is None:
        keys = sorted(labels)
    else:
        keys = sorted(set(previous) | set(labels))

    for key in keys:
        current = labels.get(key)
        if previous is not None and previous.get(key) == current:
            continue

        name: int | str = key
        if label_names is not None:
            name = label_names.intern(key)

        value = "" if current is None else format_label_value(current)
        ops.append((name, value))

    if label_names is not None:
        ops.sort(key=lambda op: op[0])

    return ",".join(f"{name}={value}" for name, value in ops)


def resolve_label_name(raw: str, label_names: Sequence[str] | None) -> str:
    """
    Resolve a label reference to a name.

    Digits refer to ``x-reduct-labels`` by position when that header was sent.

    Raises:
        ProtocolError: If the index is out of range, or a literal name starts
            with ``@`` (reserved for computed labels)
    """
    if label_names is not None and raw.isascii() and raw.isdigit():
        idx = int(raw)
        if idx >= len(label_names) or not label_names[idx]:
            raise ProtocolError(f"Label index '{raw}' is out of range")
        return label_names[idx]

    if raw.startswith("@"):
        raise ProtocolError(
            "Label names must not start with '@': reserved for computed labels"
        )

    return raw


def parse_label_delta_ops(
    raw_labels: str,
    label_names: Sequence[str] | None = None,
) -> list[tuple[str, str | None]]:
    """
    Parse label operations ``key=value,...``.

    Returns:
        ``(name, value)`` pairs, value None meaning the label was removed

    Raises:
        ProtocolError: On an operation without ``=`` or an unterminated quote
    """
    ops: list[tuple[str, str | None]] = []
    rest = raw_labels.strip()

    while rest:
        key_raw, sep, value_part = rest.partition("=")
        if not sep:
            raise ProtocolError(f"Invalid batched header: '{raw_labels}'")

        key = resolve_label_name(key_raw.strip(), label_names)

        if value_part.startswith('"'):
            value_part = value_part[1:]
            end_quote = value_part.find('"')
            if end_quote == -1:
                raise ProtocolError(f"Invalid batched header: '{raw_labels}'")
            value = value_part[:end_quote].strip()
            rest = value_part[end_quote + 1 :].strip()
            if rest.startswith(","):
                rest = rest[1:].strip()
        else:
            value, _, rest = value_part.partition(",")
            value = value.strip()
            rest = rest.strip()

        ops.append((key, value if value else None))

    return ops


def apply_label_delta(
    raw_labels: str,
    base: Mapping[str, str],
    label_names: Sequence[str] | None = None,
) -> dict[str, str]:
    """Apply encoded label operations to a copy of base."""
    labels = dict(base)
    for key, value in parse_label_delta_ops(raw_labels, label_names):
        if value is None:
            labels.pop(key, None)
        else:
            labels[key] = value
    return labels


def format_v2_header(size: int, content_type: str, label_delta: str) -> str:
    """Build a v2 record header value, dropping empty trailing parts."""
    parts = [str(size)]
    if content_type or label_delta:
        parts.append(content_type)
    if label_delta:
        parts.append(label_delta)
    return ",".join(parts)


def parse_v2_header(
    raw: str,
    previous: RecordMeta | None,
    label_names: Sequence[str] | None = None,
) -> RecordMeta:
    """
    Decode a v2 record header against the previous record of the same entry.

    An omitted or empty content type and omitted labels are inherited from
    the previous record. The first record of an entry must carry a content type.

    Raises:
        ProtocolError: If the header is malformed or the first record of an
            entry has no content type
    """
    size_raw, sep, rest = raw.partition(",")
    content_length = parse_int(size_raw)
    if content_length < 0:
        raise ProtocolError(f"Invalid batched header: '{raw}'")

    content_type_raw, sep_labels, labels_raw = rest.partition(",")
    content_type = content_type_raw.strip() if sep else ""

    if not content_type:
        if previous is None:
            raise ProtocolError(
                "Content-type and labels must be provided for the first record "
                "of an entry"
            )
        content_type = previous.content_type

    base = previous.labels if previous is not None else {}
    if sep_labels:
        labels = apply_label_delta(labels_raw, base, label_names)
    else:
        labels = dict(base)

    return RecordMeta(
        content_length=content_length,
        content_type=content_type,
        labels=labels,
    )


# ============================================================================
# Header classification
# ============================================================================


@dataclass(frozen=True, slots=True)
class RecordHeader:
    """
    Header describing one framed record.

    For v1 the entry index is always 0 and the delta is the timestamp itself.
    """

    entry_index: int
    delta: int
    value: str


@dataclass(frozen=True, slots=True)
class ErrorHeader:
    """Per-record error reported by the server."""

    entry_index: int
    delta: int
    code: int
    message: str


@dataclass(frozen=True, slots=True)
class ControlHeader:
    """Batch-wide header such as ``x-reduct-entries`` or ``x-reduct-last``."""

    name: str
    value: str


BatchHeader = Union[RecordHeader, ErrorHeader, ControlHeader]


def _iter_headers(headers: Any) -> Iterable[tuple[str, str]]:
    if hasattr(headers, "multi_items"):
        items = headers.multi_items()
    else:
        items = headers.items()
    for name, value in items:
        yield name.lower(), value


def _parse_error_value(name: str, value: str) -> tuple[int, str]:
    code_raw, _, message = value.partition(",")
    code_raw = code_raw.strip()
    if not _is_decimal(code_raw):
        raise ProtocolError(f"Invalid error header '{name}': '{value}'")
    return int(code_raw), message.strip()


def _is_decimal(value: str) -> bool:
    return value.isascii() and value.isdigit()


def _split_index_and_delta(suffix: str) -> tuple[int, int] | None:
    index_raw, sep, delta_raw = suffix.rpartition("-")
    if not sep or not _is_decimal(index_raw) or not _is_decimal(delta_raw):
        return None
    return int(index_raw), int(delta_raw)


def classify_v2_headers(headers: Any, *, with_errors: bool = True) -> list[BatchHeader]:
    """
    Sort response headers into record, error and control headers (protocol v2).

    Unrelated ``x-reduct-*`` headers are skipped.

    Args:
        headers: ``httpx.Headers`` or any mapping of header names to values
        with_errors: Decode ``x-reduct-error-*`` headers, otherwise skip them

    Raises:
        ProtocolError: On a malformed ``x-reduct-error-*`` header when
            with_errors is set
    """
    result: list[BatchHeader] = []
    for name, value in _iter_headers(headers):
        if not name.startswith(HEADER_PREFIX):
            continue

        if name in CONTROL_HEADERS:
            result.append(ControlHeader(name=name, value=value))
            continue

        if name.startswith(ERROR_HEADER_PREFIX):
            if not with_errors:
                continue
            parsed = _split_index_and_delta(name[len(ERROR_HEADER_PREFIX) :])
            if parsed is None:
                raise ProtocolError(f"Invalid error header '{name}'")
            code, message = _parse_error_value(name, value)
            result.append(
                ErrorHeader(
                    entry_index=parsed[0], delta=parsed[1], code=code, message=message
                )
            )
            continue

        parsed = _split_index_and_delta(name[len(HEADER_PREFIX) :])
        if parsed is None:
            continue
        result.append(RecordHeader(entry_index=parsed[0], delta=parsed[1], value=value))

    return result


def classify_v1_headers(headers: Any, *, with_errors: bool = True) -> list[BatchHeader]:
    """
    Sort response headers into record, error and control headers (protocol v1).

    Args:
        headers: ``httpx.Headers`` or any mapping of header names to values
        with_errors: Decode ``x-reduct-error-*`` headers, otherwise skip them

    Raises:
        ProtocolError: On a non-numeric timestamp in a time header, or in an
            error header when with_errors is set
    """
    result: list[BatchHeader] = []
    for name, value in _iter_headers(headers):
        if name == LAST_HEADER:
            result.append(ControlHeader(name=name, value=value))
        elif name.startswith(TIME_HEADER_PREFIX):
            ts = parse_int(
                name[len(TIME_HEADER_PREFIX) :], "timestamp in header", signed=True
            )
            result.append(RecordHeader(entry_index=0, delta=ts, value=value))
        elif name.startswith(ERROR_HEADER_PREFIX) and with_errors:
            ts = parse_int(
                name[len(ERROR_HEADER_PREFIX) :], "timestamp in header", signed=True
            )
            code, message = _parse_error_value(name, value)
            result.append(
                ErrorHeader(entry_index=0, delta=ts, code=code, message=message)
            )
    return result


def control_values(headers: Iterable[BatchHeader]) -> dict[str, str]:
    """Collect control headers into a name -> value mapping."""
    return {h.name: h.value for h in headers if isinstance(h, ControlHeader)}
