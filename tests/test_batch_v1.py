"""Tests for the single-entry batch protocol."""

from __future__ import annotations

import httpx
import pytest

from reduct._batch_v1 import (
    fetch_and_parse_batch_v1,
    make_headers_v1,
    parse_batch_headers_v1,
    parse_errors_from_headers_v1,
)
from reduct._errors import ApiError, NotFoundError, ProtocolError
from reduct._types import BatchType, PendingRecord


class TestParseBatchHeaders:
    """Tests for parse_batch_headers_v1."""

    def test_records_are_ordered_by_timestamp(self) -> None:
        headers = {
            "x-reduct-time-30": "1,text/plain",
            "x-reduct-time-4": "2,text/plain,a=1",
            "x-reduct-time-100": '3,image/png,b="x,y"',
        }
        frames, last = parse_batch_headers_v1(headers)

        assert [ts for ts, _ in frames] == [4, 30, 100]
        assert frames[0][1].labels == {"a": "1"}
        assert frames[2][1].labels == {"b": "x,y"}
        assert frames[2][1].content_type == "image/png"
        assert last is False

    def test_negative_timestamp(self) -> None:
        frames, _ = parse_batch_headers_v1({"x-reduct-time--5": "1,text/plain"})
        assert [ts for ts, _ in frames] == [-5]

    @pytest.mark.parametrize("name", ["x-reduct-time-1_0", "x-reduct-time-+5"])
    def test_malformed_timestamp(self, name: str) -> None:
        with pytest.raises(ProtocolError):
            parse_batch_headers_v1({name: "1,text/plain"})

    def test_error_headers_are_ignored_when_reading(self) -> None:
        headers = {"x-reduct-time-1": "1,text/plain", "x-reduct-error-x": "oops"}

        frames, _ = parse_batch_headers_v1(headers)

        assert [ts for ts, _ in frames] == [1]
        with pytest.raises(ProtocolError):
            parse_errors_from_headers_v1(headers)

    def test_last_flag(self) -> None:
        _, last = parse_batch_headers_v1({"x-reduct-last": "true"})
        assert last is True


class TestFetchAndParse:
    """Tests for reading query results with protocol v1."""

    @pytest.mark.anyio
    async def test_reads_records_of_one_batch(self, scripted):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={
                    "x-reduct-time-1000": "5,text/plain,room=kitchen",
                    "x-reduct-time-2000": "3,application/json",
                    "x-reduct-last": "true",
                },
                content=b"hello{ }",
            )

        http, server = scripted(handler, api_version="1.17")
        records = fetch_and_parse_batch_v1(
            "bucket", "entry", "42",
            continue_query=False, poll_interval=0, head=False, http=http,
        )

        first = await anext(records)
        assert first.entry == "entry"
        assert first.timestamp == 1000
        assert first.labels == {"room": "kitchen"}
        assert first.content_type == "text/plain"
        assert first.last is False
        assert await first.read() == b"hello"

        second = await anext(records)
        assert second.timestamp == 2000
        assert second.last is True
        assert await second.read() == b"{ }"

        with pytest.raises(StopAsyncIteration):
            await anext(records)

        assert server.paths() == ["GET /api/v1/b/bucket/entry/batch?q=42"]
        assert server.requests[0].headers["authorization"] == "Bearer secret"

    @pytest.mark.anyio
    async def test_head_query_has_empty_bodies(self, scripted):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"x-reduct-time-1": "5,text/plain", "x-reduct-last": "true"},
            )

        http, server = scripted(handler)
        records = [
            r
            async for r in fetch_and_parse_batch_v1(
                "bucket", "entry", "7",
                continue_query=False, poll_interval=0, head=True, http=http,
            )
        ]

        assert len(records) == 1
        assert records[0].size == 5
        assert await records[0].read() == b""
        assert server.requests[0].method == "HEAD"

    @pytest.mark.anyio
    async def test_no_content_ends_non_continuous_query(self, scripted):
        http, server = scripted(lambda request: httpx.Response(204))

        records = [
            r
            async for r in fetch_and_parse_batch_v1(
                "bucket", "entry", "7",
                continue_query=False, poll_interval=0, head=False, http=http,
            )
        ]

        assert records == []
        assert len(server.requests) == 1

    @pytest.mark.anyio
    async def test_names_are_escaped_in_path(self, scripted):
        http, server = scripted(lambda request: httpx.Response(204), api_version="1.17")

        async for _ in fetch_and_parse_batch_v1(
            "my bucket", "cam#1", "7",
            continue_query=False, poll_interval=0, head=False, http=http,
        ):
            pass

        assert server.paths() == ["GET /api/v1/b/my%20bucket/cam%231/batch?q=7"]

    @pytest.mark.anyio
    async def test_expired_query_raises(self, scripted):
        http, _ = scripted(
            lambda request: httpx.Response(
                404, headers={"x-reduct-error": "Query 7 not found"}
            )
        )

        with pytest.raises(NotFoundError, match="Query 7 not found"):
            async for _ in fetch_and_parse_batch_v1(
                "bucket", "entry", "7",
                continue_query=True, poll_interval=0, head=False, http=http,
            ):
                pass


class TestWriteHeaders:
    """Tests for make_headers_v1 and parse_errors_from_headers_v1."""

    def test_write_headers(self) -> None:
        records = [
            PendingRecord("entry", 1, b"abc", "text/plain", {"a": "x,y"}),
            PendingRecord("entry", 2, b"de"),
        ]
        headers, payload = make_headers_v1(records, BatchType.WRITE)

        assert headers["x-reduct-time-1"] == '3,text/plain,a="x,y"'
        assert headers["x-reduct-time-2"] == "2,application/octet-stream"
        assert headers["Content-Type"] == "application/octet-stream"
        assert payload == [b"abc", b"de"]

    def test_update_headers(self) -> None:
        records = [PendingRecord("entry", 1, labels={"a": "1", "b": ""})]
        headers, payload = make_headers_v1(records, BatchType.UPDATE)

        assert headers["x-reduct-time-1"] == "0,,a=1,b="
        assert payload == []

    def test_remove_headers(self) -> None:
        headers, payload = make_headers_v1(
            [PendingRecord("entry", 5)], BatchType.REMOVE
        )
        assert headers["x-reduct-time-5"] == "0,"
        assert payload == []

    def test_parse_errors(self) -> None:
        errors = parse_errors_from_headers_v1(
            {
                "x-reduct-error-1": "409,A record with timestamp 1 already exists",
                "x-reduct-time-2": "1,text/plain",
            }
        )
        assert errors == {
            1: ApiError("A record with timestamp 1 already exists", status=409)
        }
