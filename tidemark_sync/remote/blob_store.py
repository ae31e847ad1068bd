"""
Remote blob adapter.

Talks to a store that only understands whole files: one JSON array per
collection (``collection.json``, ``tag.json``). Every call goes through
the shared retry policy:

- 409 (conflict), 423 (locked), 5xx: retried, 3 attempts in total
- 405 (method not allowed): one fallback to the transport's raw request,
  outside the retry budget
- 401/403: AuthenticationError, no retry
- 404 on load: the file does not exist yet, treated as empty
- anything else: RemoteStorageError, no retry

``save`` never blindly overwrites: it reads the current file, merges the
outgoing records into it (last-writer-wins on ``updatedAt``, remote wins
ties) and writes the merged array back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from ..exceptions import (
    AuthenticationError,
    NotFoundError,
    RemoteStorageError,
    SyncStorageError,
    TransientServerError,
    TransportError,
    ValidationError,
)
from ..sync.conflict import merge_snapshots
from .retry import AUTH_STATUS_CODES, RetryConfig, is_retryable_status, retry_with_backoff
from .transport import BlobTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_retryable(exc: Exception) -> bool:
    return isinstance(exc, TransportError) and is_retryable_status(exc.status)


class RemoteBlobAdapter:
    """Load and save whole JSON-array resources on a blob store.

    Example:
        >>> adapter = RemoteBlobAdapter(WebDAVTransport(url, user, password), "/tidemark")
        >>> tags = await adapter.load("tag.json")
        >>> await adapter.save("tag.json", tags + [{"id": "t9", "name": "New"}])
    """

    def __init__(
        self,
        transport: BlobTransport,
        base_path: str = "/",
        retry_config: RetryConfig | None = None,
    ):
        self.transport = transport
        self.base_path = "/" + base_path.strip("/") if base_path.strip("/") else ""
        self.retry_config = retry_config or RetryConfig()

    def path_for(self, name: str) -> str:
        return f"{self.base_path}/{name.lstrip('/')}"

    async def ensure_base_path(self) -> None:
        """Check that the base folder is reachable, creating it when missing.

        Raises:
            AuthenticationError: On 401/403
            TransientServerError: If retryable failures outlast the budget
            RemoteStorageError: On any other failure
        """
        folder = (self.base_path or "") + "/"
        if await self._call(lambda: self.transport.exists(folder), folder):
            return

        create = getattr(self.transport, "ensure_directory", None)
        if create is None:
            raise RemoteStorageError(folder, "base folder does not exist")
        logger.info(f"Creating remote folder {folder}")
        await self._call(lambda: create(folder), folder)

    # =========================================================================
    # Load
    # =========================================================================

    async def load(self, name: str) -> list[dict[str, Any]]:
        """Fetch the records of a resource.

        Returns:
            Valid records; an empty list if the resource does not exist

        Raises:
            AuthenticationError: On 401/403
            TransientServerError: If retryable failures outlast the budget
            RemoteStorageError: On any other failure
        """
        path = self.path_for(name)
        fallback_used = False

        async def fetch() -> str:
            nonlocal fallback_used
            try:
                return await self.transport.get(path)
            except TransportError as e:
                if e.status != 405 or fallback_used:
                    raise
                fallback_used = True
                logger.warning(f"GET not allowed for {path}, falling back to raw request")
                try:
                    return await self.transport.raw_request("GET", path)
                except TransportError as fallback_error:
                    raise self._fallback_failed(path, fallback_error) from fallback_error

        try:
            content = await self._call(fetch, path)
        except NotFoundError:
            logger.info(f"{name} does not exist on the remote yet")
            return []

        return self._parse_records(name, content)

    def _parse_records(self, name: str, content: str | bytes | None) -> list[dict[str, Any]]:
        if not content or not str(content).strip():
            return []
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"{name} is not valid JSON, treating as empty: {e}")
            return []

        if not isinstance(parsed, list):
            logger.warning(f"Invalid data format in {name}: expected array")
            return []

        records = [
            item
            for item in parsed
            if isinstance(item, dict) and isinstance(item.get("id"), str) and item["id"]
        ]
        dropped = len(parsed) - len(records)
        if dropped:
            logger.warning(
                f"Dropped {dropped} malformed record(s) from {name}",
                extra={"resource": name, "dropped": dropped},
            )
        logger.debug(f"Loaded {len(records)} record(s) from {name}")
        return records

    # =========================================================================
    # Save
    # =========================================================================

    async def save(self, name: str, docs: list[dict[str, Any]]) -> None:
        """Merge ``docs`` into the remote resource and write it back.

        Raises:
            ValidationError: If ``docs`` is not a list (never retried)
            AuthenticationError: On 401/403
            TransientServerError: If retryable failures outlast the budget
            RemoteStorageError: On any other failure
        """
        if not isinstance(docs, list):
            raise ValidationError(name, "expected a list of records", type(docs).__name__)
        for item in docs:
            if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                raise ValidationError(name, "every record must be an object with an id")

        path = self.path_for(name)

        try:
            remote = await self.load(name)
        except SyncStorageError as e:
            # A failed read must never block the write.
            logger.warning(f"Could not read {name} before writing, assuming empty: {e}")
            remote = []

        body = json.dumps(merge_snapshots(remote, docs), indent=2, ensure_ascii=False)
        fallback_used = False

        async def write() -> None:
            nonlocal fallback_used
            try:
                await self.transport.put(path, body, overwrite=True)
            except TransportError as e:
                if e.status != 405 or fallback_used:
                    raise
                fallback_used = True
                logger.warning(f"PUT not allowed for {path}, falling back to raw request")
                try:
                    await self.transport.raw_request("PUT", path, body)
                except TransportError as fallback_error:
                    raise self._fallback_failed(path, fallback_error) from fallback_error

        await self._call(write, path)
        logger.info(f"Saved {name} to remote")

    # =========================================================================
    # Error classification
    # =========================================================================

    async def _call(self, fn: Callable[[], Coroutine[Any, Any, T]], path: str) -> T:
        """Run ``fn`` under the retry policy and classify what escapes it."""
        try:
            return await retry_with_backoff(
                fn,
                is_retryable=_is_retryable,
                config=self.retry_config,
                context_msg=path,
            )
        except TransportError as e:
            raise self._classify(path, e) from e

    def _classify(self, path: str, error: TransportError) -> SyncStorageError:
        if error.status in AUTH_STATUS_CODES:
            return AuthenticationError(path, error.message or f"HTTP {error.status}")
        if error.status == 404:
            return NotFoundError(path)
        if is_retryable_status(error.status):
            return TransientServerError(
                path,
                status=error.status,
                attempts=self.retry_config.max_attempts,
                cause=error,
            )
        logger.error(f"Remote call on {path} failed with HTTP {error.status}")
        return RemoteStorageError(path, str(error), status=error.status, cause=error)

    def _fallback_failed(self, path: str, error: TransportError) -> SyncStorageError:
        if error.status in AUTH_STATUS_CODES:
            return AuthenticationError(path, error.message or f"HTTP {error.status}")
        if error.status == 404:
            return NotFoundError(path)
        return RemoteStorageError(
            path, f"raw fallback failed: {error}", status=error.status, cause=error
        )
