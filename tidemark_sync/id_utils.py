"""ID escaping utilities for the local document store.

The local store reserves ids starting with ``_`` for its own bookkeeping,
so document ids are escaped before they are persisted locally and
unescaped before they leave for a remote backend or a caller.

    _hidden   <->  %5Fhidden
    %literal  <->  %25literal

The escape character ``%`` is reserved too, otherwise an id that already
begins with ``%5F`` could not be told apart from an escaped one.

Apply ``escape_id`` at most once per persistence boundary: it is
reversible but not idempotent.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

RESERVED_PREFIX = "_"
ESCAPE_CHAR = "%"

_ESCAPES = {
    RESERVED_PREFIX: "%5F",
    ESCAPE_CHAR: "%25",
}
_UNESCAPES = {encoded: raw for raw, encoded in _ESCAPES.items()}


def escape_id(doc_id: str) -> str:
    """Escape a leading reserved character of a document id."""
    if not doc_id:
        return doc_id
    encoded = _ESCAPES.get(doc_id[0])
    if encoded is None:
        return doc_id
    return encoded + doc_id[1:]


def unescape_id(doc_id: str) -> str:
    """Reverse ``escape_id``. Ids that were never escaped come back unchanged."""
    raw = _UNESCAPES.get(doc_id[:3])
    if raw is None:
        return doc_id
    return raw + doc_id[3:]


def escape_document(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with its ``id`` escaped."""
    copy = dict(data)
    if isinstance(copy.get("id"), str):
        copy["id"] = escape_id(copy["id"])
    return copy


def unescape_document(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with its ``id`` unescaped."""
    copy = dict(data)
    if isinstance(copy.get("id"), str):
        copy["id"] = unescape_id(copy["id"])
    return copy
