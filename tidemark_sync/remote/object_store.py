"""
Remote object adapter.

Per-object backends (remoteStorage) store each document as its own typed
object under a scope path. The adapter validates documents against a
declared type schema before sending them and maps every failure onto the
package's exception hierarchy. It does not retry; the sync engine owns
retries for this backend.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import aiohttp

from ..exceptions import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    RemoteStorageError,
    TransientServerError,
    TransportError,
    ValidationError,
)
from ..models import Collection
from .retry import AUTH_STATUS_CODES, is_retryable_status
from .transport import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "/tidemark"

# Context URL of the declared types, stamped onto every stored object.
SCHEMA_CONTEXT = "http://remotestorage.io/spec/modules/tidemark"

VALIDATION_STATUS_CODES = frozenset({400, 422})


@runtime_checkable
class ScopedObjectClient(Protocol):
    """Key/value RPC over typed objects stored by id under a scope."""

    async def get_all(self, scope: str) -> dict[str, Any]: ...

    async def get_object(self, scope: str, object_id: str) -> dict[str, Any] | None: ...

    async def store_object(
        self, scope: str, type_name: str, object_id: str, obj: dict[str, Any]
    ) -> None: ...


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _is_optional_str(value: Any) -> bool:
    return value is None or isinstance(value, str)


def _is_timestamp(value: Any) -> bool:
    return value is None or (isinstance(value, int | float | str) and not isinstance(value, bool))


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


# Declared type schema: field -> (check, description). ``id`` is always required.
FieldCheck = tuple[Callable[[Any], bool], str]

DECLARED_TYPES: dict[Collection, dict[str, FieldCheck]] = {
    Collection.BOOKMARKS: {
        "url": (_is_str, "string"),
        "title": (_is_optional_str, "string"),
        "description": (_is_optional_str, "string"),
        "tagIds": (_is_str_list, "array of strings"),
        "favicon": (_is_optional_str, "string"),
        "createdAt": (_is_timestamp, "timestamp"),
        "updatedAt": (_is_timestamp, "timestamp"),
        "lastVisited": (_is_timestamp, "timestamp"),
        "visitCount": (
            lambda v: v is None or (isinstance(v, int) and not isinstance(v, bool)),
            "integer",
        ),
        "isValid": (lambda v: v is None or isinstance(v, bool), "boolean"),
    },
    Collection.TAGS: {
        "name": (_is_str, "string"),
        "color": (_is_optional_str, "string"),
        "createdAt": (_is_timestamp, "timestamp"),
        "updatedAt": (_is_timestamp, "timestamp"),
    },
}


def validate_object(collection: Collection, obj: Any) -> None:
    """Check ``obj`` against the declared type of ``collection``.

    Raises:
        ValidationError: On the first field that does not match
    """
    if not isinstance(obj, dict):
        raise ValidationError(collection.type_name, f"expected object, got {type(obj).__name__}")
    doc_id = obj.get("id")
    if not isinstance(doc_id, str) or not doc_id:
        raise ValidationError("id", "missing or not a non-empty string", repr(doc_id))
    for key, (check, expected) in DECLARED_TYPES[collection].items():
        if key in obj and not check(obj[key]):
            raise ValidationError(key, f"must be {expected}", repr(obj[key]))


class RemoteStorageClient:
    """aiohttp client for a remoteStorage server.

    Folders are listed with a trailing slash and answer with an ``items``
    map; objects are plain JSON documents.

    Example:
        >>> client = RemoteStorageClient("https://storage.example.com/alice", token)
        >>> await client.store_object("/tidemark/tags", "tag", "t1", {"id": "t1"})
        >>> await client.close()
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def _url(self, scope: str, object_id: str | None = None) -> str:
        url = f"{self.base_url}/{scope.strip('/')}/"
        if object_id is not None:
            url += quote(object_id, safe="")
        return url

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/ld+json, application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _request(self, method: str, url: str, body: Any = None) -> Any:
        headers = self._headers()
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(body)
        try:
            async with self._get_session().request(
                method, url, data=data, headers=headers
            ) as response:
                text = await response.text()
                if response.status == 404 and method == "GET":
                    return None
                if response.status >= 400:
                    raise TransportError(response.status, text[:200])
                return json.loads(text) if text.strip() else None
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise NetworkError(url, e) from e

    async def get_all(self, scope: str) -> dict[str, Any]:
        """Fetch every object in a folder, keyed by id."""
        listing = await self._request("GET", self._url(scope))
        items = (listing or {}).get("items", {})
        objects: dict[str, Any] = {}
        for name in items:
            if name.endswith("/"):
                continue
            obj = await self._request("GET", self._url(scope, name))
            if obj is not None:
                objects[name] = obj
        return objects

    async def get_object(self, scope: str, object_id: str) -> dict[str, Any] | None:
        return await self._request("GET", self._url(scope, object_id))

    async def store_object(
        self, scope: str, type_name: str, object_id: str, obj: dict[str, Any]
    ) -> None:
        body = dict(obj)
        body["@context"] = f"{SCHEMA_CONTEXT}/{type_name}"
        await self._request("PUT", self._url(scope, object_id), body)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class RemoteObjectAdapter:
    """One collection on a per-object backend."""

    def __init__(
        self,
        client: ScopedObjectClient,
        collection: Collection,
        root_scope: str = DEFAULT_SCOPE,
    ):
        self.client = client
        self.collection = collection
        self.scope = f"{root_scope.rstrip('/')}/{collection.value}"

    async def list(self) -> list[dict[str, Any]]:
        """Every object in the collection's scope.

        Objects that are not mappings are dropped with a warning.
        """
        raw = await self._call(self.client.get_all, self.scope)
        objects: list[dict[str, Any]] = []
        dropped = 0
        for key, obj in (raw or {}).items():
            if not isinstance(obj, dict):
                dropped += 1
                continue
            record = {k: v for k, v in obj.items() if k != "@context"}
            record.setdefault("id", key)
            objects.append(record)
        if dropped:
            logger.warning(
                f"Dropped {dropped} malformed object(s) from {self.scope}",
                extra={"scope": self.scope, "dropped": dropped},
            )
        return objects

    async def get(self, doc_id: str) -> dict[str, Any]:
        """Fetch one object.

        Raises:
            NotFoundError: If the object does not exist
        """
        obj = await self._call(self.client.get_object, self.scope, doc_id)
        if obj is None:
            raise NotFoundError(self.scope, doc_id)
        record = {k: v for k, v in obj.items() if k != "@context"}
        record.setdefault("id", doc_id)
        return record

    async def save(self, doc: dict[str, Any]) -> None:
        """Store one object under its id.

        Raises:
            ValidationError: If ``doc`` does not match the declared type
        """
        validate_object(self.collection, doc)
        await self._call(
            self.client.store_object,
            self.scope,
            self.collection.type_name,
            doc["id"],
            doc,
        )

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await fn(*args)
        except TransportError as e:
            raise self._classify(e) from e

    def _classify(self, error: TransportError) -> Exception:
        if error.status in AUTH_STATUS_CODES:
            return AuthenticationError(self.scope, error.message or f"HTTP {error.status}")
        if error.status in VALIDATION_STATUS_CODES:
            return ValidationError(self.collection.type_name, error.message or "rejected by server")
        if error.status == 404:
            return NotFoundError(self.scope)
        if is_retryable_status(error.status):
            return TransientServerError(self.scope, status=error.status, attempts=1, cause=error)
        logger.error(f"Remote object call on {self.scope} failed with HTTP {error.status}")
        return RemoteStorageError(self.scope, str(error), status=error.status, cause=error)
