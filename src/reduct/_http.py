"""
HTTP transport for the ReductStore API.

Thin wrapper over httpx.AsyncClient that maps failures to the client's
exception types and decodes response bodies by content type.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, Mapping
from typing import Any

import httpx
from pydantic import BaseModel

from reduct._errors import TransportError, error_from_status
from reduct._types import API_HEADER, API_PREFIX, DEFAULT_TIMEOUT, ERROR_HEADER
from reduct._util import parse_api_version

logger = logging.getLogger(__name__)


class HttpResponse:
    """
    Response of one API call.

    Attributes:
        status: HTTP status code
        headers: Case-insensitive response headers
        data: Decoded JSON (dict/list), text, bytes, a byte stream when the
            body was requested as a stream, or None for HEAD and 204 responses
    """

    __slots__ = ("status", "headers", "data", "_response")

    def __init__(
        self,
        status: int,
        headers: httpx.Headers,
        data: Any = None,
        response: httpx.Response | None = None,
    ) -> None:
        self.status = status
        self.headers = headers
        self.data = data
        self._response = response

    async def aclose(self) -> None:
        """Release the connection of a streamed body."""
        if self._response is not None:
            await self._response.aclose()
            self._response = None


def _encode_body(data: Any) -> tuple[Any, dict[str, str]]:
    if data is None:
        return None, {}
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data), {}
    if isinstance(data, str):
        return data.encode("utf-8"), {}
    if isinstance(data, AsyncIterable):
        return data, {}
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", exclude_none=True)
    return json.dumps(data).encode("utf-8"), {"Content-Type": "application/json"}


class HttpClient:
    """
    HTTP client bound to one ReductStore instance.

    No network IO is performed by the constructor.

    Args:
        url: Server URL, e.g. ``http://localhost:8383``
        api_token: API token sent as a bearer token
        timeout: Request timeout in seconds (or an httpx.Timeout)
        verify_ssl: Verify TLS certificates (only for an internally created client)
        headers: Extra headers sent with every request
        client: Optional httpx.AsyncClient to use (will not be closed)
    """

    def __init__(
        self,
        url: str,
        *,
        api_token: str | None = None,
        timeout: float | httpx.Timeout | None = None,
        verify_ssl: bool = True,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = url.rstrip("/") + API_PREFIX
        self._timeout = timeout if timeout is not None else DEFAULT_TIMEOUT
        self._headers: dict[str, str] = dict(headers or {})
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"

        self._own_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self._timeout, verify=verify_ssl
        )
        self._api_version: tuple[int, int] | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def api_version(self) -> tuple[int, int] | None:
        """Server API version from the last response, if the server sent it."""
        return self._api_version

    async def aclose(self) -> None:
        """Close the transport if it was created by this client."""
        if self._own_client:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
        *,
        stream: bool = False,
    ) -> HttpResponse:
        """
        Perform a request against the API.

        Args:
            method: HTTP method
            path: Path relative to ``/api/v1``
            data: Request body (bytes, str, async byte iterable or JSON-able value)
            headers: Extra request headers (an explicit Content-Length is kept)
            stream: Return the body as a byte stream whatever its content type

        Returns:
            The decoded response

        Raises:
            TransportError: If no response was received
            ApiError: On a non-2xx status
        """
        url = f"{self._base_url}{path}"
        content, body_headers = _encode_body(data)
        request_headers = {**self._headers, **body_headers, **(headers or {})}

        request = self._client.build_request(
            method,
            url,
            headers=request_headers,
            content=content,
            timeout=self._timeout,
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise TransportError(
                f"timeout of {self._timeout}s exceeded", url=url, original=e
            ) from e
        except httpx.RequestError as e:
            raise TransportError(
                str(e) or e.__class__.__name__, url=url, original=e
            ) from e

        logger.debug("%s %s -> %d", method, path, response.status_code)

        version = parse_api_version(response.headers.get(API_HEADER))
        if version is not None:
            self._api_version = version

        if not response.is_success:
            body = await response.aread()
            await response.aclose()
            message = response.headers.get(ERROR_HEADER) or response.reason_phrase
            raise error_from_status(
                response.status_code, message, url=url, body=body
            )

        if method == "HEAD" or response.status_code == 204:
            await response.aclose()
            return HttpResponse(response.status_code, response.headers)

        if stream:
            return HttpResponse(
                response.status_code,
                response.headers,
                response.aiter_bytes(),
                response=response,
            )

        raw = await response.aread()
        await response.aclose()

        content_type = response.headers.get("content-type", "")
        data: Any
        if content_type.startswith("application/json"):
            data = json.loads(raw) if raw else {}
        elif content_type.startswith("text/"):
            data = response.text
        else:
            data = raw
        return HttpResponse(response.status_code, response.headers, data)

    async def get(
        self,
        path: str,
        headers: Mapping[str, str] | None = None,
        *,
        stream: bool = False,
    ) -> HttpResponse:
        return await self.request("GET", path, headers=headers, stream=stream)

    async def head(
        self, path: str, headers: Mapping[str, str] | None = None
    ) -> HttpResponse:
        return await self.request("HEAD", path, headers=headers)

    async def post(
        self,
        path: str,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        return await self.request("POST", path, data, headers)

    async def put(
        self,
        path: str,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        return await self.request("PUT", path, data, headers)

    async def patch(
        self,
        path: str,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        return await self.request("PATCH", path, data, headers)

    async def delete(
        self, path: str, headers: Mapping[str, str] | None = None
    ) -> HttpResponse:
        return await self.request("DELETE", path, headers=headers)
