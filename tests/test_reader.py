"""Tests for slicing record bodies out of a batched response."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from reduct._errors import ApiError, ProtocolError, UnexpectedEndOfStream
from reduct._reader import BatchStreamReader, poll_batched_records
from reduct.record import Record


async def chunked(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


async def collect(stream: AsyncIterator[bytes]) -> bytes:
    return b"".join([chunk async for chunk in stream])


class TestBatchStreamReader:
    """Tests for BatchStreamReader.create_stream()."""

    @pytest.mark.anyio
    @pytest.mark.parametrize(
        "parts",
        [
            [b"aaabbbbcc"],
            [b"a", b"aab", b"bb", b"bc", b"c"],
            [b"aaab", b"", b"bbbcc"],
        ],
    )
    async def test_frames_are_sliced_exactly(self, parts: list[bytes]):
        reader = BatchStreamReader(chunked(*parts))

        first = await collect(await reader.create_stream(3, False))
        second = await collect(await reader.create_stream(4, False))
        last = await collect(await reader.create_stream(2, True))

        assert (first, second, last) == (b"aaa", b"bbbb", b"cc")
        assert len(first) + len(second) + len(last) == 9

    @pytest.mark.anyio
    async def test_leftover_is_kept_for_next_frame(self):
        reader = BatchStreamReader(chunked(b"abcdef"))
        assert await collect(await reader.create_stream(2, False)) == b"ab"
        assert reader.leftover == b"cdef"
        assert await collect(await reader.create_stream(1, False)) == b"c"
        assert reader.leftover == b"def"

    @pytest.mark.anyio
    async def test_last_frame_streams_the_rest(self):
        reader = BatchStreamReader(chunked(b"ab", b"cd", b"ef"))
        await collect(await reader.create_stream(1, False))

        stream = await reader.create_stream(5, True)
        assert [chunk async for chunk in stream] == [b"b", b"cd", b"ef"]

    @pytest.mark.anyio
    async def test_zero_length_frame(self):
        reader = BatchStreamReader(chunked(b"xyz"))
        assert await collect(await reader.create_stream(0, False)) == b""
        assert await collect(await reader.create_stream(3, True)) == b"xyz"

    @pytest.mark.anyio
    async def test_unexpected_end_of_stream(self):
        reader = BatchStreamReader(chunked(b"abc", b"de"))
        await reader.create_stream(2, False)

        with pytest.raises(UnexpectedEndOfStream) as exc_info:
            await reader.create_stream(10, False)

        assert isinstance(exc_info.value, ProtocolError)
        assert exc_info.value.expected == 10
        assert exc_info.value.received == 3

    @pytest.mark.anyio
    async def test_no_source_gives_empty_streams(self):
        reader = BatchStreamReader(None)
        assert await collect(await reader.create_stream(100, False)) == b""
        assert await collect(await reader.create_stream(100, True)) == b""


def record(ts: int, last: bool = False) -> Record:
    return Record(entry="entry", timestamp=ts, size=0, last=last)


class ScriptedBatches:
    """read_batch() stand-in answering from a list of batches or errors."""

    def __init__(self, *batches: list[Record] | Exception) -> None:
        self._batches = list(batches)
        self.calls = 0

    def __call__(self) -> AsyncIterator[Record]:
        self.calls += 1
        return self._read(self._batches.pop(0))

    async def _read(self, batch: list[Record] | Exception) -> AsyncIterator[Record]:
        if isinstance(batch, Exception):
            raise batch
        for item in batch:
            yield item


class TestPollBatchedRecords:
    """Tests for the 204 polling loop."""

    @pytest.mark.anyio
    async def test_continuous_query_polls_until_last(self):
        no_content = ApiError("No content", status=204)
        batches = ScriptedBatches(no_content, no_content, [record(1), record(2, last=True)])

        records = [
            r
            async for r in poll_batched_records(
                batches, continue_query=True, poll_interval=0
            )
        ]

        assert [r.timestamp for r in records] == [1, 2]
        assert batches.calls == 3

    @pytest.mark.anyio
    async def test_non_continuous_query_ends_on_204(self):
        batches = ScriptedBatches(ApiError("No content", status=204))

        records = [
            r
            async for r in poll_batched_records(
                batches, continue_query=False, poll_interval=0
            )
        ]

        assert records == []
        assert batches.calls == 1

    @pytest.mark.anyio
    async def test_fetches_until_no_content(self):
        batches = ScriptedBatches(
            [record(1)], [record(2)], ApiError("No content", status=204)
        )

        records = [
            r
            async for r in poll_batched_records(
                batches, continue_query=False, poll_interval=0
            )
        ]

        assert [r.timestamp for r in records] == [1, 2]
        assert batches.calls == 3

    @pytest.mark.anyio
    async def test_other_errors_propagate(self):
        batches = ScriptedBatches(ApiError("Query expired", status=404))

        with pytest.raises(ApiError) as exc_info:
            async for _ in poll_batched_records(
                batches, continue_query=True, poll_interval=0
            ):
                pass

        assert exc_info.value.status == 404

    @pytest.mark.anyio
    async def test_protocol_errors_are_not_retried(self):
        batches = ScriptedBatches(ProtocolError("bad header"), [record(1)])

        with pytest.raises(ProtocolError):
            async for _ in poll_batched_records(
                batches, continue_query=True, poll_interval=0
            ):
                pass

        assert batches.calls == 1

    @pytest.mark.anyio
    async def test_stopping_early_makes_no_more_requests(self):
        batches = ScriptedBatches([record(1), record(2)], [record(3)])
        records = poll_batched_records(batches, continue_query=True, poll_interval=0)

        first = await anext(records)
        await records.aclose()

        assert first.timestamp == 1
        assert batches.calls == 1
