"""
Tidemark Sync

Keeps a personal bookmark library consistent across a local document store
and any number of remote backends.

Provides:
- Local JSON document stores with revision checks and tombstones
- Remote backends: per-object (remoteStorage) and whole-file (WebDAV)
- Last-writer-wins conflict resolution that never drops a newer local edit
- A sync orchestrator with single-flight, debounce, cooldown and backoff

Usage:

    >>> from tidemark_sync import BookmarkLibrary, SyncSettings, create_orchestrator
    >>> orchestrator = create_orchestrator(SyncSettings.load())
    >>> library = BookmarkLibrary(orchestrator.stores, on_change=orchestrator.request_sync)
    >>> await library.add_bookmark("https://example.com", "Example")
    >>> report = await orchestrator.sync("webdav")
    >>> for conflict in report.conflicts:
    ...     print(conflict.id, conflict.kind.value)
    >>> await orchestrator.dispose()
"""

# Configuration
from .config import RemoteStorageSettings, SyncSettings, WebDAVSettings

# Exceptions
from .exceptions import (
    AuthenticationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RemoteStorageError,
    StorageIOError,
    SyncError,
    SyncStorageError,
    TransientServerError,
    TransportError,
    ValidationError,
)

# Identifier codec
from .id_utils import escape_id, unescape_id

# Import / export
from .importer import (
    ImportPayload,
    ImportResult,
    export_payload,
    import_payload,
    load_import_file,
    parse_import_payload,
    write_export_file,
)

# Library facade
from .library import BookmarkLibrary

# Local storage
from .local import BulkResult, LocalDocumentStore

# Logging
from .logging_utils import configure_structured_logging

# Documents
from .models import Bookmark, Collection, Document, Tag, normalize_timestamp

# Remote adapters
from .remote import (
    BlobTransport,
    HttpUrlChecker,
    RemoteBlobAdapter,
    RemoteObjectAdapter,
    RemoteStorageClient,
    RetryConfig,
    ScopedObjectClient,
    UrlChecker,
    WebDAVTransport,
    retry_with_backoff,
)

# Schema translation
from .schema import SchemaTranslator, translator_for

# Sync engine
from .sync.backends import BlobStoreBackend, ObjectStoreBackend, SyncBackend
from .sync.conflict import (
    Conflict,
    ConflictKind,
    ConflictResolver,
    MergeResult,
    SkippedRecord,
    SkipReason,
    merge_snapshots,
)
from .sync.engine import (
    BackendState,
    CollectionReport,
    SyncConfig,
    SyncOrchestrator,
    SyncReport,
    SyncStatus,
    create_orchestrator,
)

__all__ = [
    # Configuration
    "SyncSettings",
    "WebDAVSettings",
    "RemoteStorageSettings",
    # Documents
    "Document",
    "Bookmark",
    "Tag",
    "Collection",
    "normalize_timestamp",
    # Identifier codec
    "escape_id",
    "unescape_id",
    # Logging
    "configure_structured_logging",
    # Local storage
    "LocalDocumentStore",
    "BulkResult",
    # Schema translation
    "SchemaTranslator",
    "translator_for",
    # Remote adapters
    "BlobTransport",
    "WebDAVTransport",
    "RemoteBlobAdapter",
    "ScopedObjectClient",
    "RemoteStorageClient",
    "RemoteObjectAdapter",
    "RetryConfig",
    "retry_with_backoff",
    "UrlChecker",
    "HttpUrlChecker",
    # Conflict resolution
    "ConflictResolver",
    "Conflict",
    "ConflictKind",
    "MergeResult",
    "SkippedRecord",
    "SkipReason",
    "merge_snapshots",
    # Sync engine
    "SyncBackend",
    "BlobStoreBackend",
    "ObjectStoreBackend",
    "SyncOrchestrator",
    "SyncConfig",
    "SyncStatus",
    "BackendState",
    "SyncReport",
    "CollectionReport",
    "create_orchestrator",
    # Library and import/export
    "BookmarkLibrary",
    "ImportPayload",
    "ImportResult",
    "parse_import_payload",
    "import_payload",
    "export_payload",
    "load_import_file",
    "write_export_file",
    # Exceptions
    "SyncStorageError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthenticationError",
    "TransientServerError",
    "NetworkError",
    "RemoteStorageError",
    "StorageIOError",
    "SyncError",
    "TransportError",
]

__version__ = "0.1.0"
