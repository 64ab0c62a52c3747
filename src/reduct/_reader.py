"""
Reading framed records out of a batched response body.

Records in a batch are delimited by length only, so the reader keeps the bytes
it over-read for the next record. The last record of a batch is not buffered:
its stream forwards the rest of the response body as it arrives.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import TYPE_CHECKING

import anyio

from reduct._errors import ApiError, UnexpectedEndOfStream
from reduct._types import ByteStream

if TYPE_CHECKING:
    from reduct.record import Record

logger = logging.getLogger(__name__)


async def _iter_chunks(*chunks: bytes) -> AsyncIterator[bytes]:
    for chunk in chunks:
        if chunk:
            yield chunk


async def _pass_through(leftover: bytes, source: ByteStream) -> AsyncIterator[bytes]:
    if leftover:
        yield leftover
    async for chunk in source:
        if chunk:
            yield chunk


class BatchStreamReader:
    """
    Slices record payloads out of a batched response body.

    Args:
        source: Response body chunks, or None for HEAD requests and empty batches
    """

    def __init__(self, source: ByteStream | None) -> None:
        self._source = source
        self._leftover = b""

    @property
    def leftover(self) -> bytes:
        """Bytes read from the body but not yet handed to a record."""
        return self._leftover

    async def _read_exactly(self, source: ByteStream, length: int) -> bytes:
        parts: list[bytes] = []
        filled = 0

        if self._leftover:
            take = min(len(self._leftover), length)
            parts.append(self._leftover[:take])
            self._leftover = self._leftover[take:]
            filled += take

        while filled < length:
            chunk = await anext(source, None)
            if chunk is None:
                raise UnexpectedEndOfStream(expected=length, received=filled)

            need = length - filled
            if len(chunk) > need:
                parts.append(chunk[:need])
                self._leftover = chunk[need:]
                filled = length
            else:
                parts.append(chunk)
                filled += len(chunk)

        return b"".join(parts)

    async def create_stream(self, byte_length: int, last: bool) -> ByteStream:
        """
        Create the body stream of the next record.

        Args:
            byte_length: Payload size of the record
            last: True for the last record of the batch

        Returns:
            A fully buffered stream of exactly ``byte_length`` bytes, or a live
            pass-through stream for the last record

        Raises:
            UnexpectedEndOfStream: If the body ends before ``byte_length`` bytes
        """
        if self._source is None:
            return _iter_chunks()

        if last:
            leftover, self._leftover = self._leftover, b""
            return _pass_through(leftover, self._source)

        data = await self._read_exactly(self._source, byte_length)
        return _iter_chunks(data)


async def poll_batched_records(
    read_batch: Callable[[], AsyncIterator[Record]],
    *,
    continue_query: bool,
    poll_interval: float,
) -> AsyncIterator[Record]:
    """
    Fetch batches until the query is exhausted.

    A 204 response means there is no data yet: continuous queries sleep for
    ``poll_interval`` seconds and fetch again, other queries end. The record
    marked as last ends the sequence even for continuous queries.

    Args:
        read_batch: Performs one request and yields the records of its batch
        continue_query: Keep polling on 204
        poll_interval: Seconds to wait between polls
    """
    while True:
        try:
            async with aclosing(read_batch()) as records:
                async for record in records:
                    yield record
                    if record.last:
                        logger.debug(
                            "Query finished with last record %d", record.timestamp
                        )
                        return
        except ApiError as e:
            if e.status != 204:
                raise
            if not continue_query:
                logger.debug("No more records, query finished")
                return
            logger.debug("No records yet, polling again in %ss", poll_interval)
            await anyio.sleep(poll_interval)
