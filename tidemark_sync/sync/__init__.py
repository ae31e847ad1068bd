"""
Synchronization module.

Provides last-writer-wins conflict resolution shared by the remote
adapters and the sync engine. The engine itself lives in
``tidemark_sync.sync.engine`` and the backend wrappers in
``tidemark_sync.sync.backends``.
"""

from .conflict import (
    Conflict,
    ConflictKind,
    ConflictResolver,
    MergeResult,
    SkippedRecord,
    SkipReason,
    merge_snapshots,
)

__all__ = [
    "Conflict",
    "ConflictKind",
    "ConflictResolver",
    "MergeResult",
    "SkipReason",
    "SkippedRecord",
    "merge_snapshots",
]
