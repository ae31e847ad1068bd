"""
Shared test configuration and fixtures.

Provides in-memory stand-ins for the remote collaborators:
- FakeBlobTransport: a whole-file store whose calls can be scripted to
  fail with HTTP statuses
- FakeObjectClient: a scoped key/value object store with the same scripting
- FakeUrlChecker: link checks answered from a table
"""

from __future__ import annotations

import json
import tempfile
from collections import defaultdict, deque
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from tidemark_sync.exceptions import TransportError
from tidemark_sync.local import LocalDocumentStore
from tidemark_sync.models import Collection


class FakeBlobTransport:
    """In-memory BlobTransport.

    ``fail("put", 423, 423)`` makes the next two ``put`` calls raise
    TransportError(423); later calls succeed again.
    """

    def __init__(self, files: dict[str, Any] | None = None):
        self.files: dict[str, str] = {}
        for path, content in (files or {}).items():
            self.set_json(path, content)
        self.calls: list[tuple[str, str]] = []
        self.directories: set[str] = {"/"}
        self._failures: dict[str, deque[int]] = defaultdict(deque)
        self.closed = False

    def fail(self, method: str, *statuses: int) -> None:
        self._failures[method].extend(statuses)

    def set_json(self, path: str, content: Any) -> None:
        self.files[path] = content if isinstance(content, str) else json.dumps(content)

    def get_json(self, path: str) -> Any:
        return json.loads(self.files[path])

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    def _maybe_fail(self, method: str) -> None:
        queue = self._failures.get(method)
        if queue:
            raise TransportError(queue.popleft(), f"scripted {method} failure")

    async def get(self, path: str) -> str:
        self.calls.append(("get", path))
        self._maybe_fail("get")
        if path not in self.files:
            raise TransportError(404, "not found")
        return self.files[path]

    async def put(self, path: str, body: str, overwrite: bool = True) -> None:
        self.calls.append(("put", path))
        self._maybe_fail("put")
        if not overwrite and path in self.files:
            raise TransportError(412, "exists")
        self.files[path] = body

    async def delete(self, path: str) -> None:
        self.calls.append(("delete", path))
        self._maybe_fail("delete")
        if self.files.pop(path, None) is None:
            raise TransportError(404, "not found")

    async def exists(self, path: str) -> bool:
        self.calls.append(("exists", path))
        self._maybe_fail("exists")
        return path in self.files or path in self.directories

    async def raw_request(self, method: str, path: str, body: str | None = None) -> str:
        self.calls.append(("raw_" + method.lower(), path))
        self._maybe_fail("raw_" + method.lower())
        if method == "GET":
            if path not in self.files:
                raise TransportError(404, "not found")
            return self.files[path]
        if method == "PUT":
            self.files[path] = body or ""
            return ""
        raise TransportError(405, f"{method} not supported")

    async def ensure_directory(self, path: str) -> None:
        self.calls.append(("mkcol", path))
        self._maybe_fail("mkcol")
        self.directories.add(path)

    async def close(self) -> None:
        self.closed = True


class FakeObjectClient:
    """In-memory ScopedObjectClient."""

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = defaultdict(dict)
        self.stored: list[tuple[str, str, str]] = []
        self._failures: dict[str, deque[int]] = defaultdict(deque)
        self.closed = False

    def fail(self, method: str, *statuses: int) -> None:
        self._failures[method].extend(statuses)

    def _maybe_fail(self, method: str) -> None:
        queue = self._failures.get(method)
        if queue:
            raise TransportError(queue.popleft(), f"scripted {method} failure")

    async def get_all(self, scope: str) -> dict[str, Any]:
        self._maybe_fail("get_all")
        return dict(self.objects.get(scope, {}))

    async def get_object(self, scope: str, object_id: str) -> dict[str, Any] | None:
        self._maybe_fail("get_object")
        return self.objects.get(scope, {}).get(object_id)

    async def store_object(
        self, scope: str, type_name: str, object_id: str, obj: dict[str, Any]
    ) -> None:
        self._maybe_fail("store_object")
        self.stored.append((scope, type_name, object_id))
        self.objects[scope][object_id] = dict(obj)

    async def close(self) -> None:
        self.closed = True


class FakeUrlChecker:
    """UrlChecker answering from a table; unknown URLs are reachable."""

    def __init__(self, results: dict[str, bool] | None = None):
        self.results = dict(results or {})
        self.checked: list[str] = []

    async def check(self, url: str) -> bool:
        self.checked.append(url)
        return self.results.get(url, True)


@pytest.fixture
async def temp_dir() -> AsyncIterator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def stores(temp_dir: Path) -> dict[Collection, LocalDocumentStore]:
    """One local store per collection, in a temporary directory."""
    return {collection: LocalDocumentStore(collection, temp_dir) for collection in Collection}


@pytest.fixture
def blob_transport() -> FakeBlobTransport:
    return FakeBlobTransport()


@pytest.fixture
def object_client() -> FakeObjectClient:
    return FakeObjectClient()


@pytest.fixture
def sleeps() -> Iterator[AsyncMock]:
    """Patch out backoff sleeps; the mock records requested delays."""
    with patch("tidemark_sync.remote.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def url_checker() -> FakeUrlChecker:
    return FakeUrlChecker()
