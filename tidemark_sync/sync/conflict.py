"""
Conflict resolution for synchronization.

Reconciles a remote snapshot of a collection with the local one using
last-writer-wins on ``updatedAt``:

- remote-only documents are additions
- documents equal in every field but the revision are skipped
- a strictly newer remote document replaces the local one
- a strictly newer local document is a conflict (local stays authoritative)
- equal timestamps with different content is an ambiguous conflict

Conflicts are returned as data. Nothing here writes anywhere; the caller
decides what to apply and what to show the user.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..exceptions import ValidationError
from ..id_utils import unescape_id
from ..models import Document, normalize_timestamp


class ConflictKind(Enum):
    """Why a remote document was not applied."""

    LOCAL_NEWER = "local_newer"  # Local edit is strictly newer
    AMBIGUOUS = "ambiguous"  # Same timestamp, different content


class SkipReason(Enum):
    IDENTICAL = "identical"
    DUPLICATE = "duplicate"
    DELETED_LOCALLY = "deleted_locally"


@dataclass
class Conflict:
    """A remote document that could not be applied automatically.

    Attributes:
        kind: Type of conflict
        local: Local version of the document
        remote: Remote version, already translated to the local shape
        detected_at: When the conflict was detected
    """

    kind: ConflictKind
    local: Document
    remote: Document
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def id(self) -> str:
        return self.local.id

    def unescaped(self) -> Conflict:
        """Copy carrying raw ids, for handing to collaborators."""
        return replace(
            self,
            local=replace(self.local, id=unescape_id(self.local.id)),
            remote=replace(self.remote, id=unescape_id(self.remote.id)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "local": self.local.to_dict(),
            "remote": self.remote.to_dict(include_revision=False),
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass
class SkippedRecord:
    """A remote document that needed no write."""

    id: str
    reason: SkipReason

    def unescaped(self) -> SkippedRecord:
        return replace(self, id=unescape_id(self.id))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "reason": self.reason.value}


@dataclass
class MergeResult:
    """Outcome of reconciling one collection."""

    to_save: list[Document] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)

    def ids_with_reason(self, reason: SkipReason) -> set[str]:
        return {s.id for s in self.skipped if s.reason is reason}

    def conflict_ids(self, kind: ConflictKind | None = None) -> set[str]:
        return {c.id for c in self.conflicts if kind is None or c.kind is kind}

    def summary(self) -> dict[str, int]:
        return {
            "to_save": len(self.to_save),
            "conflicts": len(self.conflicts),
            "skipped": len(self.skipped),
        }


class ConflictResolver:
    """Reconciles local and remote document sets for one collection.

    The policy never silently drops a concurrently newer local edit:
    local wins when strictly newer, remote wins when strictly newer,
    and a tie with different content is left for the user.
    """

    def resolve(
        self,
        local_docs: Iterable[Document],
        remote_docs: Iterable[Document],
    ) -> MergeResult:
        """Compute additions, updates, skips and conflicts.

        Args:
            local_docs: Documents currently in the local store
            remote_docs: Remote documents, already translated to local shape

        Returns:
            MergeResult; local documents without a remote counterpart are
            not mentioned
        """
        local_by_id = {doc.id: doc for doc in local_docs}

        # Later duplicates of the same id win, earlier ones are reported.
        remote_by_id: dict[str, Document] = {}
        result = MergeResult()
        for remote in remote_docs:
            if remote.id in remote_by_id:
                result.skipped.append(SkippedRecord(remote.id, SkipReason.DUPLICATE))
            remote_by_id[remote.id] = remote

        for doc_id, remote in remote_by_id.items():
            local = local_by_id.get(doc_id)

            if local is None:
                result.to_save.append(remote)
                continue

            if local.same_fields(remote):
                result.skipped.append(SkippedRecord(doc_id, SkipReason.IDENTICAL))
                continue

            kind = self.detect_conflict(local, remote)
            if kind is not None:
                result.conflicts.append(Conflict(kind=kind, local=local, remote=remote))
                continue

            result.to_save.append(self._take_remote(local, remote))

        return result

    def detect_conflict(self, local: Document, remote: Document) -> ConflictKind | None:
        """Classify two differing versions of the same document.

        Returns:
            ConflictKind if the remote version must not be applied, None if it may
        """
        if local.updated_at is None or remote.updated_at is None:
            return None
        if local.updated_at > remote.updated_at:
            return ConflictKind.LOCAL_NEWER
        if local.updated_at == remote.updated_at and local.content() != remote.content():
            return ConflictKind.AMBIGUOUS
        return None

    def _take_remote(self, local: Document, remote: Document) -> Document:
        """Remote version to store, keeping the local creation time if remote has none."""
        if remote.created_at is None and local.created_at is not None:
            return replace(remote, created_at=local.created_at)
        return remote


def _updated_at(record: Mapping[str, Any]) -> datetime | None:
    try:
        return normalize_timestamp(record.get("updatedAt"), "updatedAt")
    except ValidationError:
        return None


def merge_snapshots(
    remote: Iterable[Mapping[str, Any]],
    local: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """Merge a local snapshot into a remote one, record by record.

    Used before overwriting a whole remote file. The result is the union of
    ids: remote records keep their position, a local record replaces its
    remote counterpart only when its ``updatedAt`` is strictly newer, and
    local-only records are appended. Remote wins ties.

    Args:
        remote: Records currently in the remote file
        local: Records about to be written

    Returns:
        Merged list of records
    """
    merged: dict[str, dict[str, Any]] = {}
    for record in remote:
        merged[record["id"]] = dict(record)

    for record in local:
        doc_id = record["id"]
        existing = merged.get(doc_id)
        if existing is None:
            merged[doc_id] = dict(record)
            continue

        local_ts = _updated_at(record)
        remote_ts = _updated_at(existing)
        if local_ts is not None and (remote_ts is None or local_ts > remote_ts):
            merged[doc_id] = dict(record)

    return list(merged.values())
