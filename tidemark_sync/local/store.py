"""
Local replicated document store.

Keeps the durable local copy of one collection in a single JSON file:

    {base_path}/{collection}.json
        {
          "documents":  {"<id>": {...local schema...}},
          "tombstones": {"<id>": {"deletedAt": "...", "revision": "..."}}
        }

Writes are atomic (temp file + rename) and serialized by a lock, so each
put or remove is indivisible from the point of view of other tasks.
Ids are stored exactly as given: callers hand in already-escaped ids.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..exceptions import ConflictError, NotFoundError, SyncStorageError, ValidationError
from ..models import Collection, Document, format_timestamp, normalize_timestamp, utc_now
from .file_ops import read_json, write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = Path.home() / ".tidemark" / "data"


@dataclass
class BulkResult:
    """Outcome of one document in a ``bulk_put``."""

    id: str
    ok: bool
    revision: str | None = None
    error: SyncStorageError | None = None


def next_revision(previous: str | None) -> str:
    """Build a fresh revision token ``<generation>-<random hex>``."""
    generation = 0
    if previous:
        head, _, _ = previous.partition("-")
        if head.isdigit():
            generation = int(head)
    return f"{generation + 1}-{uuid.uuid4().hex}"


class LocalDocumentStore:
    """File-backed store for one collection of documents.

    Example:
        >>> store = LocalDocumentStore(Collection.TAGS, Path("/tmp/data"))
        >>> saved = await store.put(Tag(id="t1", name="Work"))
        >>> saved.revision
        '1-...'
    """

    def __init__(self, collection: Collection, base_path: Path | None = None):
        self.collection = collection
        self.base_path = base_path or DEFAULT_BASE_PATH
        self._lock = asyncio.Lock()
        self._documents: dict[str, dict[str, Any]] | None = None
        self._tombstones: dict[str, dict[str, Any]] = {}

    @property
    def path(self) -> Path:
        return self.base_path / f"{self.collection.value}.json"

    @property
    def document_type(self) -> type[Document]:
        return self.collection.document_type

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_all(self) -> list[Document]:
        """Return every live document."""
        documents = await self._load()
        return [self.document_type.from_dict(data) for data in documents.values()]

    async def get(self, doc_id: str) -> Document:
        """Get a live document by id.

        Raises:
            NotFoundError: If no live document has this id
        """
        documents = await self._load()
        data = documents.get(doc_id)
        if data is None:
            raise NotFoundError(self.collection.value, doc_id)
        return self.document_type.from_dict(data)

    async def get_tombstones(self) -> dict[str, datetime]:
        """Ids deleted locally, with their deletion time."""
        await self._load()
        result: dict[str, datetime] = {}
        for doc_id, stone in self._tombstones.items():
            deleted_at = normalize_timestamp(stone.get("deletedAt"), "deletedAt")
            if deleted_at is not None:
                result[doc_id] = deleted_at
        return result

    # =========================================================================
    # Writes
    # =========================================================================

    async def put(self, doc: Document) -> Document:
        """Create or update a document.

        A document carrying a revision must match the stored one; a document
        without a revision replaces whatever is stored.

        Raises:
            ConflictError: If the revision is stale or the document is missing
        """
        async with self._lock:
            documents = dict(await self._load())
            tombstones = dict(self._tombstones)
            saved = self._apply(documents, tombstones, doc, bypass_revision_check=False)
            await self._commit(documents, tombstones)
            return saved

    async def remove(self, doc_id: str) -> None:
        """Delete a document, leaving a tombstone.

        Raises:
            NotFoundError: If no live document has this id
        """
        async with self._lock:
            documents = await self._load()
            current = documents.get(doc_id)
            if current is None:
                raise NotFoundError(self.collection.value, doc_id)

            remaining = {k: v for k, v in documents.items() if k != doc_id}
            tombstones = dict(self._tombstones)
            tombstones[doc_id] = {
                "deletedAt": format_timestamp(utc_now()),
                "revision": next_revision(current.get("revision")),
            }
            await self._commit(remaining, tombstones)

    async def bulk_put(
        self,
        docs: Iterable[Document],
        bypass_revision_check: bool = False,
    ) -> list[BulkResult]:
        """Apply documents one by one, reporting failures per item.

        Args:
            docs: Documents to write
            bypass_revision_check: Let incoming documents always win. Only for
                data that has already been reconciled.

        Returns:
            One BulkResult per input document, in order
        """
        results: list[BulkResult] = []
        async with self._lock:
            documents = dict(await self._load())
            tombstones = dict(self._tombstones)
            for doc in docs:
                try:
                    saved = self._apply(documents, tombstones, doc, bypass_revision_check)
                except (ConflictError, ValidationError) as e:
                    results.append(BulkResult(id=getattr(doc, "id", ""), ok=False, error=e))
                    continue
                results.append(BulkResult(id=doc.id, ok=True, revision=saved.revision))

            if any(r.ok for r in results):
                await self._commit(documents, tombstones)

        failed = [r for r in results if not r.ok]
        if failed:
            logger.warning(
                f"bulk_put on {self.collection.value}: {len(failed)} of {len(results)} "
                "documents rejected"
            )
        return results

    def _apply(
        self,
        documents: dict[str, dict[str, Any]],
        tombstones: dict[str, dict[str, Any]],
        doc: Document,
        bypass_revision_check: bool,
    ) -> Document:
        """Write ``doc`` into the working maps and return the stored form."""
        if not isinstance(doc, self.document_type):
            raise ValidationError(
                "document",
                f"expected {self.document_type.__name__}, got {type(doc).__name__}",
            )
        if not doc.id:
            raise ValidationError("id", "document id must not be empty")

        current = documents.get(doc.id)
        current_revision = current.get("revision") if current else None

        if doc.revision is not None and not bypass_revision_check:
            if current is None:
                raise ConflictError(doc.id, "document does not exist", local_revision=doc.revision)
            if doc.revision != current_revision:
                raise ConflictError(
                    doc.id,
                    "stale revision",
                    local_revision=doc.revision,
                    remote_revision=current_revision,
                )

        previous = current_revision or tombstones.get(doc.id, {}).get("revision")
        data = doc.to_dict(include_revision=False)
        data["revision"] = next_revision(previous)
        stored = self.document_type.from_dict(data)

        documents[doc.id] = data
        tombstones.pop(doc.id, None)
        return stored

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _load(self) -> dict[str, dict[str, Any]]:
        if self._documents is not None:
            return self._documents

        raw = await read_json(self.path)
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValidationError(str(self.path), "store file must contain a JSON object")

        self._documents = dict(raw.get("documents") or {})
        self._tombstones = dict(raw.get("tombstones") or {})
        return self._documents

    async def _commit(
        self,
        documents: dict[str, dict[str, Any]],
        tombstones: dict[str, dict[str, Any]],
    ) -> None:
        """Persist the working maps, then make them the cached state."""
        await write_json_atomic(self.path, {"documents": documents, "tombstones": tombstones})
        self._documents = documents
        self._tombstones = tombstones
