"""
Bookmark link checks.

``HttpUrlChecker`` decides whether a bookmark's URL still answers: a HEAD
request first, then a GET for servers that refuse HEAD, each bounded by a
short timeout. Anything below 400 counts as reachable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit

import aiohttp

logger = logging.getLogger(__name__)

CHECK_TIMEOUT = 5.0  # seconds, per request


def is_well_formed(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    parts = urlsplit(url.strip()) if url else None
    return bool(parts and parts.scheme in ("http", "https") and parts.hostname)


def extract_domain(url: str) -> str:
    """Host name of ``url``, or ``url`` itself when it has none."""
    return urlsplit(url).hostname or url


def favicon_url(url: str) -> str | None:
    """Conventional ``/favicon.ico`` location at the URL's origin."""
    if not is_well_formed(url):
        return None
    parts = urlsplit(url.strip())
    return f"{parts.scheme}://{parts.netloc}/favicon.ico"


@runtime_checkable
class UrlChecker(Protocol):
    async def check(self, url: str) -> bool: ...


class HttpUrlChecker:
    """aiohttp-backed reachability check.

    Example:
        >>> checker = HttpUrlChecker()
        >>> await checker.check("https://example.com")
        True
        >>> await checker.close()
    """

    def __init__(self, timeout: float = CHECK_TIMEOUT) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _answers(self, method: str, url: str) -> bool:
        try:
            async with self._get_session().request(method, url, allow_redirects=True) as response:
                return response.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"{method} {url} failed: {e}")
            return False

    async def check(self, url: str) -> bool:
        if not is_well_formed(url):
            return False
        url = url.strip()
        if await self._answers("HEAD", url):
            return True
        return await self._answers("GET", url)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
