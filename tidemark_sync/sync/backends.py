"""
Remote backends as seen by the sync engine.

A backend knows how to pull and push the raw records of one collection and
which schema translator applies to them. The engine never talks to the
adapters directly.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from ..models import SYNC_ORDER, Collection
from ..remote.blob_store import RemoteBlobAdapter
from ..remote.object_store import DEFAULT_SCOPE, RemoteObjectAdapter, ScopedObjectClient
from ..remote.retry import RetryConfig
from ..remote.transport import BlobTransport
from ..schema import BLOB_FIELD_MAPS, OBJECT_FIELD_MAPS, SchemaTranslator, translator_for

logger = logging.getLogger(__name__)


class SyncBackend(ABC):
    """One remote synchronization target."""

    #: Whether pull/push already apply the shared retry policy.
    retries_internally: bool = False

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def connect(self) -> None:
        """Check that the backend is reachable with the configured credentials."""

    @abstractmethod
    async def pull(self, collection: Collection) -> list[dict[str, Any]]:
        """Fetch every remote record of a collection, in the backend's schema."""

    @abstractmethod
    async def push(self, collection: Collection, docs: list[dict[str, Any]]) -> None:
        """Send records of a collection, already in the backend's schema."""

    @abstractmethod
    def translator(self, collection: Collection) -> SchemaTranslator:
        """Schema translator between the local store and this backend."""

    async def close(self) -> None:
        """Release network resources."""
        return None


class ObjectStoreBackend(SyncBackend):
    """Per-object backend: one typed object per document (remoteStorage)."""

    def __init__(
        self,
        client: ScopedObjectClient,
        name: str = "remotestorage",
        root_scope: str = DEFAULT_SCOPE,
    ):
        super().__init__(name)
        self.client = client
        self.root_scope = root_scope
        self.adapters = {
            collection: RemoteObjectAdapter(client, collection, root_scope)
            for collection in SYNC_ORDER
        }

    async def connect(self) -> None:
        await self.adapters[Collection.TAGS].list()

    async def pull(self, collection: Collection) -> list[dict[str, Any]]:
        return await self.adapters[collection].list()

    async def push(self, collection: Collection, docs: list[dict[str, Any]]) -> None:
        adapter = self.adapters[collection]
        for doc in docs:
            await adapter.save(doc)
        logger.debug(f"Pushed {len(docs)} object(s) to {adapter.scope}")

    def translator(self, collection: Collection) -> SchemaTranslator:
        return translator_for(collection, OBJECT_FIELD_MAPS)

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()


class BlobStoreBackend(SyncBackend):
    """Whole-file backend: one JSON array per collection (WebDAV)."""

    retries_internally = True

    def __init__(
        self,
        transport: BlobTransport,
        name: str = "webdav",
        base_path: str = "/",
        retry_config: RetryConfig | None = None,
    ):
        super().__init__(name)
        self.transport = transport
        self.adapter = RemoteBlobAdapter(transport, base_path, retry_config)

    async def connect(self) -> None:
        await self.adapter.ensure_base_path()

    async def pull(self, collection: Collection) -> list[dict[str, Any]]:
        return await self.adapter.load(collection.resource_name)

    async def push(self, collection: Collection, docs: list[dict[str, Any]]) -> None:
        await self.adapter.save(collection.resource_name, docs)

    def translator(self, collection: Collection) -> SchemaTranslator:
        return translator_for(collection, BLOB_FIELD_MAPS)

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
