"""
Import and export of bookmark libraries.

Accepted import shapes:
1. Standard: ``{"bookmarks": [...], "tags": [...]}``
2. Simple: ``[{...}, {...}]``; records with a ``url`` are bookmarks,
   the rest are tags. Simple-format bookmarks may name their title
   ``name``.

Imported records go through the same conflict resolver as a sync pull, so
an import never overwrites a newer local edit. Exports use the local
schema with public ids and no revisions.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import ValidationError
from .id_utils import escape_document, unescape_document, unescape_id
from .local.file_ops import read_text, write_json_atomic
from .local.store import LocalDocumentStore
from .models import SYNC_ORDER, Bookmark, Collection, Document, Tag
from .sync.conflict import Conflict, ConflictResolver, SkippedRecord

logger = logging.getLogger(__name__)


@dataclass
class ImportPayload:
    """Normalized import data, ids already escaped for the local store."""

    bookmarks: list[Bookmark] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def documents(self, collection: Collection) -> list[Document]:
        return list(self.bookmarks if collection is Collection.BOOKMARKS else self.tags)


@dataclass
class ImportResult:
    """What an import did."""

    tags_imported: int = 0
    bookmarks_imported: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tagsCount": self.tags_imported,
            "bookmarksCount": self.bookmarks_imported,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "skipped": [s.to_dict() for s in self.skipped],
            "warnings": list(self.warnings),
        }


def _normalize_record(record: Any, document_type: type[Document]) -> Document:
    if not isinstance(record, dict):
        raise ValidationError("record", f"expected object, got {type(record).__name__}")
    data = dict(record)
    if not data.get("id"):
        data["id"] = data.get("_id") or uuid.uuid4().hex
    if document_type is Bookmark and "title" not in data and isinstance(data.get("name"), str):
        data["title"] = data.pop("name")
    return document_type.from_dict(escape_document(data))


def parse_import_payload(data: Any) -> ImportPayload:
    """Normalize raw import data.

    Records that fail normalization are reported in ``warnings``.

    Raises:
        ValidationError: If ``data`` is neither an array nor an object with
            ``bookmarks``/``tags`` arrays
    """
    payload = ImportPayload()

    if isinstance(data, list):
        groups = [
            (Bookmark, [r for r in data if isinstance(r, dict) and "url" in r]),
            (Tag, [r for r in data if not (isinstance(r, dict) and "url" in r)]),
        ]
    elif isinstance(data, dict):
        groups = []
        for key, document_type in (("tags", Tag), ("bookmarks", Bookmark)):
            records = data.get(key, [])
            if not isinstance(records, list):
                raise ValidationError(key, "must be an array", type(records).__name__)
            groups.append((document_type, records))
    else:
        raise ValidationError(
            "import", "expected an array or an object with bookmarks/tags arrays"
        )

    for document_type, records in groups:
        target: list[Any] = payload.bookmarks if document_type is Bookmark else payload.tags
        for index, record in enumerate(records):
            try:
                target.append(_normalize_record(record, document_type))
            except ValidationError as e:
                payload.warnings.append(f"{document_type.__name__} #{index}: {e.message}")

    if payload.warnings:
        logger.warning(f"Import: {len(payload.warnings)} record(s) could not be read")
    return payload


def _duplicate_name_warnings(tags: list[Tag]) -> list[str]:
    seen: dict[str, str] = {}
    warnings = []
    for tag in tags:
        key = tag.name.strip().lower()
        if key in seen:
            warnings.append(
                f"Tag name '{tag.name}' is used by both {unescape_id(seen[key])} "
                f"and {unescape_id(tag.id)}"
            )
        else:
            seen[key] = tag.id
    return warnings


async def import_payload(
    stores: Mapping[Collection, LocalDocumentStore],
    payload: ImportPayload,
    flag_duplicate_names: bool = False,
    resolver: ConflictResolver | None = None,
) -> ImportResult:
    """Merge imported documents into the local stores, tags first.

    Tags with the same name are all kept; with ``flag_duplicate_names``
    each collision is reported as a warning.
    """
    resolver = resolver or ConflictResolver()
    result = ImportResult(warnings=list(payload.warnings))

    for collection in SYNC_ORDER:
        store = stores[collection]
        merge = resolver.resolve(await store.get_all(), payload.documents(collection))
        result.conflicts.extend(c.unescaped() for c in merge.conflicts)
        result.skipped.extend(s.unescaped() for s in merge.skipped)

        imported = 0
        if merge.to_save:
            outcomes = await store.bulk_put(merge.to_save, bypass_revision_check=True)
            imported = sum(1 for o in outcomes if o.ok)
            result.warnings.extend(
                f"{unescape_id(o.id)}: {o.error}" for o in outcomes if not o.ok
            )

        if collection is Collection.TAGS:
            result.tags_imported = imported
            if flag_duplicate_names:
                result.warnings.extend(_duplicate_name_warnings(await store.get_all()))
        else:
            result.bookmarks_imported = imported

    logger.info(
        f"Imported {result.tags_imported} tag(s) and {result.bookmarks_imported} bookmark(s)",
        extra={"conflicts": len(result.conflicts), "warnings": len(result.warnings)},
    )
    return result


async def export_payload(stores: Mapping[Collection, LocalDocumentStore]) -> dict[str, Any]:
    """Snapshot both collections in the standard import shape."""
    data: dict[str, Any] = {}
    for collection in (Collection.BOOKMARKS, Collection.TAGS):
        docs = await stores[collection].get_all()
        data[collection.value] = [
            unescape_document(doc.to_dict(include_revision=False)) for doc in docs
        ]
    return data


async def load_import_file(path: Path) -> ImportPayload:
    """Read and normalize an import file.

    Raises:
        ValidationError: If the file is not JSON or has the wrong shape
        StorageIOError: If the file cannot be read
    """
    content = await read_text(path)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValidationError(str(path), f"not valid JSON: {e}") from e
    return parse_import_payload(data)


async def write_export_file(path: Path, payload: Mapping[str, Any]) -> None:
    await write_json_atomic(path, dict(payload))
