"""
Schema translation between the local store and remote backends.

Each backend names a few fields differently (the WebDAV bookmark file
calls a bookmark's ``title`` its ``name``). A translator renames those
fields in both directions and applies the id codec at the boundary:
remote backends only ever see raw ids, the local store only ever sees
escaped ones.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .exceptions import ValidationError
from .id_utils import escape_document, unescape_document
from .models import STORE_ONLY_KEYS, Collection, Document

FieldMap = Mapping[str, str]

# local name -> remote name
BLOB_FIELD_MAPS: dict[Collection, dict[str, str]] = {
    Collection.BOOKMARKS: {"title": "name"},
    Collection.TAGS: {},
}

OBJECT_FIELD_MAPS: dict[Collection, dict[str, str]] = {
    Collection.BOOKMARKS: {},
    Collection.TAGS: {},
}


class SchemaTranslator:
    """Bidirectional field mapping for one collection on one backend."""

    def __init__(self, document_type: type[Document], field_map: FieldMap | None = None):
        self.document_type = document_type
        self.to_remote_map: dict[str, str] = dict(field_map or {})
        self.to_local_map: dict[str, str] = {v: k for k, v in self.to_remote_map.items()}
        if len(self.to_local_map) != len(self.to_remote_map):
            raise ValueError("field map must be one-to-one")

    def to_remote(self, doc: Document) -> dict[str, Any]:
        """Convert a local document to the backend's record shape."""
        data = doc.to_dict(include_revision=False)
        remote = {self.to_remote_map.get(key, key): value for key, value in data.items()}
        return unescape_document(remote)

    def to_local(self, remote: Mapping[str, Any]) -> Document:
        """Normalize a backend record into a typed local document.

        Raises:
            ValidationError: If the record cannot be normalized
        """
        if not isinstance(remote, Mapping):
            raise ValidationError("document", f"expected object, got {type(remote).__name__}")
        data = {
            self.to_local_map.get(key, key): value
            for key, value in remote.items()
            if key not in STORE_ONLY_KEYS
        }
        return self.document_type.from_dict(escape_document(data))


def translator_for(
    collection: Collection,
    field_maps: Mapping[Collection, FieldMap] | None = None,
) -> SchemaTranslator:
    """Build the translator for ``collection`` from a per-collection map table."""
    field_map = (field_maps or {}).get(collection, {})
    return SchemaTranslator(collection.document_type, field_map)
