"""
Record - a time-stamped blob with labels read from an entry.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping

from reduct._errors import StreamConsumedError
from reduct._types import DEFAULT_CONTENT_TYPE, ByteStream, Timestamp


async def _empty() -> AsyncIterator[bytes]:
    return
    yield  # pragma: no cover


class Record:
    """
    A record read from ReductStore.

    The body is a one-shot stream - read it once with read(), read_text() or
    ``async for chunk in record``. Records yielded by a query must be read
    before the next record is requested from the query.

    Attributes:
        entry: Name of the entry the record belongs to
        timestamp: UNIX timestamp in microseconds
        size: Size of the payload in bytes
        last: True if this is the last record of the query
        content_type: Content type of the payload
        labels: Labels of the record
    """

    __slots__ = (
        "entry",
        "timestamp",
        "size",
        "last",
        "content_type",
        "labels",
        "_stream",
        "_consumed_by",
    )

    def __init__(
        self,
        *,
        entry: str,
        timestamp: Timestamp,
        size: int,
        last: bool = False,
        content_type: str | None = None,
        labels: Mapping[str, str] | None = None,
        stream: ByteStream | None = None,
    ) -> None:
        self.entry = entry
        self.timestamp = timestamp
        self.size = size
        self.last = last
        self.content_type = content_type or DEFAULT_CONTENT_TYPE
        self.labels: dict[str, str] = dict(labels or {})
        self._stream = stream if stream is not None else _empty()
        self._consumed_by: str | None = None

    def __repr__(self) -> str:
        return (
            f"Record(entry={self.entry!r}, timestamp={self.timestamp}, "
            f"size={self.size}, last={self.last}, "
            f"content_type={self.content_type!r}, labels={self.labels!r})"
        )

    def _consume(self, method: str) -> ByteStream:
        if self._consumed_by is not None:
            raise StreamConsumedError(
                attempted_method=method,
                consumed_by=self._consumed_by,
            )
        self._consumed_by = method
        return self._stream

    @property
    def consumed(self) -> bool:
        """Whether the body has been read."""
        return self._consumed_by is not None

    def __aiter__(self) -> AsyncIterator[bytes]:
        """Iterate over the payload in chunks."""
        return self._consume("__aiter__")

    async def read(self) -> bytes:
        """Read the whole payload."""
        stream = self._consume("read")
        chunks = [chunk async for chunk in stream]
        return b"".join(chunks)

    async def read_text(self, encoding: str = "utf-8") -> str:
        """Read the whole payload and decode it."""
        stream = self._consume("read_text")
        chunks = [chunk async for chunk in stream]
        return b"".join(chunks).decode(encoding)
