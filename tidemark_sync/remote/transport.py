"""
Whole-file transport for blob backends.

The blob adapter only needs a handful of path operations, described by
``BlobTransport``. ``WebDAVTransport`` implements them over aiohttp with
basic auth; tests and other servers can plug in anything with the same
shape.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

import aiohttp

from ..exceptions import NetworkError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds


@runtime_checkable
class BlobTransport(Protocol):
    """Path-level operations on a remote file store.

    Non-success responses raise ``TransportError`` carrying the HTTP status;
    connectivity failures raise ``NetworkError``.
    """

    async def get(self, path: str) -> str: ...

    async def put(self, path: str, body: str, overwrite: bool = True) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def raw_request(self, method: str, path: str, body: str | None = None) -> str:
        """Plain HTTP request without any protocol-specific headers."""
        ...


class WebDAVTransport:
    """aiohttp-backed WebDAV client.

    Example:
        >>> transport = WebDAVTransport("https://dav.example.com/dav/", "alice", "secret")
        >>> await transport.put("/tidemark/tag.json", "[]")
        >>> await transport.close()
    """

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._auth = aiohttp.BasicAuth(username, password or "") if username else None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def _url(self, path: str) -> str:
        return self.base_url + path.lstrip("/")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(auth=self._auth, timeout=self._timeout)
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        body: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        url = self._url(path)
        logger.debug(f"WebDAV {method} {url}")
        try:
            async with self._get_session().request(
                method, url, data=body, headers=headers or {}
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    raise TransportError(response.status, text[:200])
                return text
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise NetworkError(url, e) from e

    async def get(self, path: str) -> str:
        return await self._request("GET", path)

    async def put(self, path: str, body: str, overwrite: bool = True) -> None:
        headers = {
            "Content-Type": "application/json",
            "Overwrite": "T" if overwrite else "F",
        }
        await self._request("PUT", path, body, headers)

    async def delete(self, path: str) -> None:
        await self._request("DELETE", path)

    async def exists(self, path: str) -> bool:
        try:
            await self._request("HEAD", path)
        except TransportError as e:
            if e.status == 404:
                return False
            raise
        return True

    async def raw_request(self, method: str, path: str, body: str | None = None) -> str:
        headers = {"Content-Type": "application/json"} if body is not None else None
        return await self._request(method, path, body, headers)

    async def ensure_directory(self, path: str) -> None:
        """Create ``path`` and its parents with MKCOL.

        Servers answer 405 for collections that already exist.
        """
        current = ""
        for part in [p for p in path.split("/") if p]:
            current += "/" + part
            try:
                await self._request("MKCOL", current + "/")
            except TransportError as e:
                if e.status != 405:
                    raise

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
