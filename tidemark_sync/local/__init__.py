"""
Local document storage.

One atomically written JSON file per collection, with optimistic
revision checks on writes.
"""

from .store import DEFAULT_BASE_PATH, BulkResult, LocalDocumentStore, next_revision

__all__ = [
    "DEFAULT_BASE_PATH",
    "BulkResult",
    "LocalDocumentStore",
    "next_revision",
]
