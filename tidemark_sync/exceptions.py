"""
Custom exceptions for bookmark synchronization.

All stores, adapters and the sync engine raise these exceptions
for consistent error handling across backends.
"""


class SyncStorageError(Exception):
    """Base exception for all tidemark sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SyncStorageError):
    """Raised when a document or payload has a malformed shape."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class NotFoundError(SyncStorageError):
    """Raised when a document or remote resource does not exist."""

    def __init__(self, resource: str, doc_id: str | None = None):
        details = {"resource": resource}
        if doc_id is not None:
            details["doc_id"] = doc_id
            message = f"Document not found in {resource}: {doc_id}"
        else:
            message = f"Resource not found: {resource}"
        super().__init__(message, details)
        self.resource = resource
        self.doc_id = doc_id


class ConflictError(SyncStorageError):
    """Raised when a write carries a stale revision."""

    def __init__(
        self,
        doc_id: str,
        reason: str,
        local_revision: str | None = None,
        remote_revision: str | None = None,
    ):
        details = {"doc_id": doc_id, "reason": reason}
        if local_revision:
            details["local_revision"] = local_revision
        if remote_revision:
            details["remote_revision"] = remote_revision
        super().__init__(f"Revision conflict for {doc_id}: {reason}", details)
        self.doc_id = doc_id
        self.reason = reason
        self.local_revision = local_revision
        self.remote_revision = remote_revision


class AuthenticationError(SyncStorageError):
    """Raised when a remote backend rejects the credentials."""

    def __init__(self, endpoint: str, reason: str | None = None):
        details = {"endpoint": endpoint}
        if reason:
            details["reason"] = reason
        super().__init__(f"Authentication failed for {endpoint}", details)
        self.endpoint = endpoint
        self.reason = reason


class TransientServerError(SyncStorageError):
    """Raised when a remote call kept failing with lock, conflict or 5xx."""

    def __init__(
        self,
        endpoint: str,
        status: int | None = None,
        attempts: int = 1,
        cause: Exception | None = None,
    ):
        details: dict = {"endpoint": endpoint, "attempts": attempts}
        if status is not None:
            details["status"] = status
        if cause:
            details["cause"] = str(cause)
        super().__init__(
            f"Transient server error on {endpoint} (status={status}, attempts={attempts})",
            details,
        )
        self.endpoint = endpoint
        self.status = status
        self.attempts = attempts
        self.cause = cause


class NetworkError(SyncStorageError):
    """Raised when a remote backend cannot be reached at all.

    Callers should retry later, not immediately.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Network unavailable for {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class RemoteStorageError(SyncStorageError):
    """Raised for remote failures that fit no other category."""

    def __init__(
        self,
        endpoint: str,
        reason: str,
        status: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {"endpoint": endpoint, "reason": reason}
        if status is not None:
            details["status"] = status
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Remote storage error on {endpoint}: {reason}", details)
        self.endpoint = endpoint
        self.reason = reason
        self.status = status
        self.cause = cause


class StorageIOError(SyncStorageError):
    """Raised when a local storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class SyncError(SyncStorageError):
    """Raised when a sync pass fails."""

    def __init__(self, message: str, backend: str | None = None, cause: Exception | None = None):
        details: dict = {}
        if backend:
            details["backend"] = backend
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.backend = backend
        self.cause = cause


class TransportError(Exception):
    """Raised by blob transports for any non-success HTTP response.

    Adapters classify it by ``status`` into the errors above.
    """

    def __init__(self, status: int, message: str = ""):
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")
        self.status = status
        self.message = message
