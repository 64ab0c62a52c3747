"""
Query options and the cursor that iterates over a server-side query.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from reduct._types import DEFAULT_POLL_INTERVAL, Timestamp
from reduct.record import Record

logger = logging.getLogger(__name__)


class QueryType(Enum):
    """Kind of server-side query."""

    QUERY = "QUERY"
    REMOVE = "REMOVE"


@dataclass(slots=True)
class QueryOptions:
    """
    Options of a query.

    Attributes:
        ttl: Seconds the query id stays valid between fetches
        continuous: Keep polling for new records until the TTL expires
        poll_interval: Seconds between polls of a continuous query
        head: Fetch metadata only
        when: Conditional query
        strict: Fail if a condition cannot be evaluated
        ext: Parameters for server extensions
        each_s: Return one record per ``each_s`` seconds (deprecated, use ``$each_t``)
        each_n: Return every ``each_n``-th record (deprecated, use ``$each_n``)
        limit: Maximum number of records (deprecated, use ``$limit``)
    """

    ttl: int | None = None
    continuous: bool = False
    poll_interval: float = DEFAULT_POLL_INTERVAL
    head: bool = False
    when: dict[str, Any] | None = None
    strict: bool | None = None
    ext: dict[str, Any] | None = None
    each_s: float | None = None
    each_n: int | None = None
    limit: int | None = None

    def serialize(
        self,
        query_type: QueryType,
        start: Timestamp | None = None,
        stop: Timestamp | None = None,
        entries: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Build the JSON body that creates the query.

        Unset options are left out.
        """
        body: dict[str, Any] = {
            "query_type": query_type.value,
            "entries": entries,
            "start": start,
            "stop": stop,
            "ttl": self.ttl,
            "continuous": True if self.continuous else None,
            "only_metadata": True if self.head else None,
            "when": self.when,
            "strict": self.strict,
            "ext": self.ext,
            "each_s": self.each_s,
            "each_n": self.each_n,
            "limit": self.limit,
        }
        return {key: value for key, value in body.items() if value is not None}


class CursorState(Enum):
    """Lifecycle of a QueryCursor."""

    OPEN = "open"
    FETCHING = "fetching"
    YIELDING = "yielding"
    DONE = "done"
    ERROR = "error"


class QueryCursor:
    """
    Async iterator over the records of a query.

    Records are fetched lazily: a request is only made when the next record is
    requested and the current batch is exhausted. Stopping the iteration (or
    calling aclose()) guarantees no further requests.

    Each record's body must be read before the next record is requested.

    Example:
        >>> async with await bucket.query("sensor", start, stop) as cursor:
        ...     async for record in cursor:
        ...         data = await record.read()
    """

    def __init__(self, query_id: str, records: AsyncIterator[Record]) -> None:
        self._query_id = query_id
        self._records = records
        self._state = CursorState.OPEN

    @property
    def query_id(self) -> str:
        """Server-assigned id of the query."""
        return self._query_id

    @property
    def state(self) -> CursorState:
        return self._state

    def __repr__(self) -> str:
        return f"QueryCursor(query_id={self._query_id!r}, state={self._state.value})"

    def __aiter__(self) -> QueryCursor:
        return self

    async def __anext__(self) -> Record:
        if self._state in (CursorState.DONE, CursorState.ERROR):
            raise StopAsyncIteration

        self._state = CursorState.FETCHING
        try:
            record = await anext(self._records)
        except StopAsyncIteration:
            self._state = CursorState.DONE
            logger.debug("Query %s is done", self._query_id)
            raise
        except Exception:
            self._state = CursorState.ERROR
            raise

        self._state = CursorState.YIELDING
        return record

    async def aclose(self) -> None:
        """Stop the query on the client side and release the open response."""
        if self._state not in (CursorState.DONE, CursorState.ERROR):
            self._state = CursorState.DONE
        aclose = getattr(self._records, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> QueryCursor:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
