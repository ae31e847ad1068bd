"""
Remote backends.

Provides:
- RemoteBlobAdapter: whole-file JSON arrays over a BlobTransport (WebDAV)
- RemoteObjectAdapter: typed per-object storage over a ScopedObjectClient
- retry_with_backoff: the shared retry policy
- HttpUrlChecker: bookmark link reachability
"""

from .blob_store import RemoteBlobAdapter
from .object_store import (
    DECLARED_TYPES,
    RemoteObjectAdapter,
    RemoteStorageClient,
    ScopedObjectClient,
    validate_object,
)
from .retry import RetryConfig, is_retryable_status, retry_with_backoff
from .transport import BlobTransport, WebDAVTransport
from .url_check import HttpUrlChecker, UrlChecker, extract_domain, favicon_url

__all__ = [
    "DECLARED_TYPES",
    "BlobTransport",
    "HttpUrlChecker",
    "RemoteBlobAdapter",
    "RemoteObjectAdapter",
    "RemoteStorageClient",
    "RetryConfig",
    "ScopedObjectClient",
    "UrlChecker",
    "WebDAVTransport",
    "extract_domain",
    "favicon_url",
    "is_retryable_status",
    "retry_with_backoff",
    "validate_object",
]
