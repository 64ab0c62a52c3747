"""
Pytest configuration and fixtures for reduct-py tests.

Unit tests run against scripted servers built on httpx.MockTransport, no
ReductStore instance is needed.
"""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from reduct import Client
from reduct._http import HttpClient

SERVER_URL = "http://localhost:8383"

Handler = Callable[[httpx.Request], httpx.Response]


class ScriptedServer:
    """
    Answers requests with a handler and keeps them for assertions.

    Every response advertises the given API version in ``x-reduct-api``.
    """

    def __init__(self, handler: Handler, api_version: str | None) -> None:
        self._handler = handler
        self._api_version = api_version
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self._handler(request)
        if self._api_version is not None and "x-reduct-api" not in response.headers:
            response.headers["x-reduct-api"] = self._api_version
        return response

    def paths(self) -> list[str]:
        return [f"{r.method} {r.url.raw_path.decode()}" for r in self.requests]


@pytest.fixture
def scripted() -> Callable[..., tuple[HttpClient, ScriptedServer]]:
    """Factory for an HttpClient talking to a scripted server."""

    def factory(
        handler: Handler, api_version: str | None = "1.18"
    ) -> tuple[HttpClient, ScriptedServer]:
        server = ScriptedServer(handler, api_version)
        client = httpx.AsyncClient(transport=httpx.MockTransport(server))
        return HttpClient(SERVER_URL, api_token="secret", client=client), server

    return factory


def responses(*items: httpx.Response) -> Handler:
    """Handler answering requests with the given responses in order."""
    queue = list(items)

    def handler(request: httpx.Request) -> httpx.Response:
        if not queue:
            raise AssertionError(f"Unexpected request {request.method} {request.url}")
        return queue.pop(0)

    return handler


@pytest.fixture
def respond_with() -> Callable[..., Handler]:
    return responses


@pytest.fixture
def make_client() -> Callable[[Handler], tuple[Client, ScriptedServer]]:
    """Factory for a Client talking to a scripted server."""

    def factory(handler: Handler) -> tuple[Client, ScriptedServer]:
        server = ScriptedServer(handler, "1.18")
        client = Client(
            SERVER_URL,
            api_token="secret",
            client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
        )
        return client, server

    return factory
