"""
Client - entry point to a ReductStore instance.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import httpx

from reduct._errors import ConflictError
from reduct._http import HttpClient
from reduct._util import quote_path_segment
from reduct.bucket import Bucket
from reduct.messages import (
    BucketInfo,
    BucketSettings,
    FullReplicationInfo,
    ReplicationInfo,
    ReplicationMode,
    ReplicationSettings,
    ServerInfo,
    Token,
    TokenCreateResponse,
    TokenPermissions,
)

logger = logging.getLogger(__name__)


class Client:
    """
    Asynchronous client for a ReductStore instance.

    No network IO is performed by the constructor.

    Args:
        url: Server URL, e.g. ``http://localhost:8383``
        api_token: API token
        timeout: Request timeout in seconds (default 30)
        verify_ssl: Verify TLS certificates
        headers: Extra headers sent with every request
        client: Optional httpx.AsyncClient to use (will not be closed)

    Example:
        >>> async with Client("http://localhost:8383", api_token="secret") as client:
        ...     bucket = await client.get_or_create_bucket("sensors")
        ...     await bucket.write("temperature", b"21.5", labels={"room": "kitchen"})
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
        self._http = HttpClient(
            url,
            api_token=api_token,
            timeout=timeout,
            verify_ssl=verify_ssl,
            headers=headers,
            client=client,
        )

    @property
    def api_version(self) -> tuple[int, int] | None:
        """Server API version, known after the first response."""
        return self._http.api_version

    async def aclose(self) -> None:
        """Close the client and release resources."""
        await self._http.aclose()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # === Server ===

    async def get_info(self) -> ServerInfo:
        resp = await self._http.get("/info")
        return ServerInfo.model_validate(resp.data)

    async def get_bucket_list(self) -> list[BucketInfo]:
        resp = await self._http.get("/list")
        return [BucketInfo.model_validate(b) for b in resp.data["buckets"]]

    # === Buckets ===

    async def create_bucket(
        self,
        name: str,
        settings: BucketSettings | None = None,
        exist_ok: bool = False,
    ) -> Bucket:
        """
        Create a bucket.

        Args:
            name: Bucket name
            settings: Bucket settings, server defaults if omitted
            exist_ok: Do not fail if the bucket exists

        Raises:
            ConflictError: If the bucket exists and exist_ok is False
        """
        try:
            await self._http.post(f"/b/{quote_path_segment(name)}", settings)
        except ConflictError:
            if not exist_ok:
                raise
            logger.debug("Bucket %s already exists", name)
        return Bucket(name, self._http)

    async def get_bucket(self, name: str) -> Bucket:
        """
        Get an existing bucket.

        Raises:
            NotFoundError: If the bucket does not exist
        """
        await self._http.get(f"/b/{quote_path_segment(name)}")
        return Bucket(name, self._http)

    async def get_or_create_bucket(
        self, name: str, settings: BucketSettings | None = None
    ) -> Bucket:
        return await self.create_bucket(name, settings, exist_ok=True)

    # === Tokens ===

    async def get_token_list(self) -> list[Token]:
        resp = await self._http.get("/tokens")
        return [Token.model_validate(t) for t in resp.data["tokens"]]

    async def get_token(self, name: str) -> Token:
        resp = await self._http.get(f"/tokens/{quote_path_segment(name)}")
        return Token.model_validate(resp.data)

    async def create_token(self, name: str, permissions: TokenPermissions) -> str:
        """
        Create a token.

        Returns:
            The token value (it cannot be retrieved later)
        """
        resp = await self._http.post(f"/tokens/{quote_path_segment(name)}", permissions)
        return TokenCreateResponse.model_validate(resp.data).value

    async def remove_token(self, name: str) -> None:
        await self._http.delete(f"/tokens/{quote_path_segment(name)}")

    async def me(self) -> Token:
        """Get the token the client is authenticated with."""
        resp = await self._http.get("/me")
        return Token.model_validate(resp.data)

    # === Replications ===

    async def get_replications(self) -> list[ReplicationInfo]:
        resp = await self._http.get("/replications")
        return [ReplicationInfo.model_validate(r) for r in resp.data["replications"]]

    async def get_replication_detail(self, name: str) -> FullReplicationInfo:
        resp = await self._http.get(f"/replications/{quote_path_segment(name)}")
        return FullReplicationInfo.model_validate(resp.data)

    async def create_replication(
        self, name: str, settings: ReplicationSettings
    ) -> None:
        await self._http.post(f"/replications/{quote_path_segment(name)}", settings)

    async def update_replication(
        self, name: str, settings: ReplicationSettings
    ) -> None:
        await self._http.put(f"/replications/{quote_path_segment(name)}", settings)

    async def set_replication_mode(self, name: str, mode: ReplicationMode) -> None:
        """Enable, pause or disable a replication."""
        await self._http.patch(
            f"/replications/{quote_path_segment(name)}/mode",
            {"mode": ReplicationMode(mode).value},
        )

    async def remove_replication(self, name: str) -> None:
        await self._http.delete(f"/replications/{quote_path_segment(name)}")
