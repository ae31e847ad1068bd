"""
Core document types for bookmark synchronization.

Every record that moves through the sync engine is a typed ``Document``:
a ``Bookmark`` or a ``Tag``. Raw mappings coming from imports or remote
pulls are normalized exactly once, by ``from_dict``, and everything past
that boundary works on the typed form.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from .exceptions import ValidationError

# Epoch values at or above this are taken to be milliseconds (JS Date.now()).
EPOCH_MILLIS_THRESHOLD = 1e11

# Keys written by older PouchDB-based clients; their meaning is local to
# the store that issued them.
STORE_ONLY_KEYS = frozenset({"_id", "_rev", "revision"})

TIMESTAMP_KEYS = frozenset({"createdAt", "updatedAt"})

DEFAULT_TAG_COLOR = "#3b82f6"


def normalize_timestamp(value: Any, field_name: str = "timestamp") -> datetime | None:
    """Normalize an ISO-8601 string or Unix epoch to an aware UTC datetime.

    Args:
        value: datetime, ISO string, epoch number or numeric string
        field_name: Field name used in validation errors

    Returns:
        UTC datetime, or None for missing values

    Raises:
        ValidationError: If the value cannot be interpreted as a timestamp
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(field_name, "boolean is not a timestamp", str(value))
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, int | float):
        return _from_epoch(float(value), field_name)
    if isinstance(value, str):
        text = value.strip()
        try:
            return _from_epoch(float(text), field_name)
        except ValueError:
            pass
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(field_name, "not an ISO-8601 timestamp", value) from None
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)
    raise ValidationError(field_name, f"unsupported type {type(value).__name__}", str(value))


def _from_epoch(seconds: float, field_name: str) -> datetime:
    if abs(seconds) >= EPOCH_MILLIS_THRESHOLD:
        seconds = seconds / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        raise ValidationError(field_name, "epoch out of range", str(seconds)) from None


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a timestamp the way the local schema stores it."""
    return value.isoformat() if value is not None else None


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Document:
    """Fields shared by every synced record.

    Attributes:
        id: Stable identifier, unique within its collection
        revision: Token issued by the local store on each write
        created_at: Creation time (UTC)
        updated_at: Last modification time (UTC)
        extra: Unknown fields, carried through untouched
    """

    id: str
    revision: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    # Local-schema keys owned by the subclass, in serialization order.
    domain_keys: ClassVar[tuple[str, ...]] = ()

    def to_dict(self, include_revision: bool = True) -> dict[str, Any]:
        """Convert to the local-schema mapping."""
        data: dict[str, Any] = {"id": self.id}
        if include_revision and self.revision is not None:
            data["revision"] = self.revision
        data["createdAt"] = format_timestamp(self.created_at)
        data["updatedAt"] = format_timestamp(self.updated_at)
        data.update(self._domain_dict())
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    def _domain_dict(self) -> dict[str, Any]:
        return {}

    def content(self) -> dict[str, Any]:
        """Fields that make up the document's content (no revision, no timestamps)."""
        data = self.to_dict(include_revision=False)
        for key in TIMESTAMP_KEYS:
            data.pop(key, None)
        return data

    def same_fields(self, other: Document) -> bool:
        """Deep equality of every field except the revision token."""
        return self.to_dict(include_revision=False) == other.to_dict(include_revision=False)

    @classmethod
    def from_dict(cls, data: Any) -> Document:
        """Normalize a raw mapping into this document type.

        Raises:
            ValidationError: If ``data`` is not an object or lacks an id
        """
        if not isinstance(data, dict):
            raise ValidationError("document", f"expected object, got {type(data).__name__}")
        doc_id = data.get("id")
        if not isinstance(doc_id, str) or not doc_id:
            raise ValidationError("id", "missing or not a non-empty string", repr(doc_id))

        revision = data.get("revision")
        known = {"id", "createdAt", "updatedAt", *cls.domain_keys, *STORE_ONLY_KEYS}
        extra = {k: v for k, v in data.items() if k not in known}

        return cls(
            id=doc_id,
            revision=revision if isinstance(revision, str) else None,
            created_at=normalize_timestamp(data.get("createdAt"), "createdAt"),
            updated_at=normalize_timestamp(data.get("updatedAt"), "updatedAt"),
            extra=extra,
            **cls._domain_from_dict(data),
        )

    @classmethod
    def _domain_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {}


@dataclass
class Bookmark(Document):
    """A saved link."""

    url: str = ""
    title: str = ""
    description: str = ""
    tag_ids: list[str] = field(default_factory=list)
    favicon: str | None = None
    last_visited: datetime | None = None
    is_valid: bool | None = None
    visit_count: int = 0

    domain_keys: ClassVar[tuple[str, ...]] = (
        "url",
        "title",
        "description",
        "tagIds",
        "favicon",
        "lastVisited",
        "isValid",
        "visitCount",
    )

    def _domain_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "tagIds": list(self.tag_ids),
            "favicon": self.favicon,
            "lastVisited": format_timestamp(self.last_visited),
            "isValid": self.is_valid,
            "visitCount": self.visit_count,
        }

    @classmethod
    def _domain_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        tag_ids = data.get("tagIds") or []
        if not isinstance(tag_ids, list) or not all(isinstance(t, str) for t in tag_ids):
            raise ValidationError("tagIds", "must be a list of strings", repr(tag_ids))

        visit_count = data.get("visitCount") or 0
        if not isinstance(visit_count, int) or isinstance(visit_count, bool):
            raise ValidationError("visitCount", "must be an integer", repr(visit_count))

        return {
            "url": _optional_str(data, "url"),
            "title": _optional_str(data, "title"),
            "description": _optional_str(data, "description"),
            # Order-preserving de-duplication: tagIds is a set of tag ids.
            "tag_ids": list(dict.fromkeys(tag_ids)),
            "favicon": data.get("favicon"),
            "last_visited": normalize_timestamp(data.get("lastVisited"), "lastVisited"),
            "is_valid": data.get("isValid"),
            "visit_count": visit_count,
        }


@dataclass
class Tag(Document):
    """A label that bookmarks reference by id."""

    name: str = ""
    color: str = DEFAULT_TAG_COLOR

    domain_keys: ClassVar[tuple[str, ...]] = ("name", "color")

    def _domain_dict(self) -> dict[str, Any]:
        return {"name": self.name, "color": self.color}

    @classmethod
    def _domain_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": _optional_str(data, "name"),
            "color": data.get("color") or DEFAULT_TAG_COLOR,
        }


def _optional_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(key, "must be a string", repr(value))
    return value


class Collection(Enum):
    """The synced collections and their remote resource names."""

    BOOKMARKS = "bookmarks"
    TAGS = "tags"

    @property
    def document_type(self) -> type[Document]:
        return Bookmark if self is Collection.BOOKMARKS else Tag

    @property
    def resource_name(self) -> str:
        """Whole-file name on blob backends."""
        return "collection.json" if self is Collection.BOOKMARKS else "tag.json"

    @property
    def type_name(self) -> str:
        """Declared object type on per-object backends."""
        return "bookmark" if self is Collection.BOOKMARKS else "tag"


# Tags first so bookmarks pulled in the same pass find their tags.
SYNC_ORDER: tuple[Collection, ...] = (Collection.TAGS, Collection.BOOKMARKS)
