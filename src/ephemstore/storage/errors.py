"""Object storage error types.

Expected outcomes (not found, expired, malformed id) are kept distinct from
genuine backend faults so callers can map them without string matching.
Nothing in this package retries; retry policy belongs to the caller.
"""

from __future__ import annotations

from datetime import datetime


class ObjectStorageError(Exception):
    """Base exception for object storage operations.

    Attributes:
        message: Human-readable error message.
        object_id: Object identifier associated with the operation (if any).
    """

    def __init__(self, message: str, *, object_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.object_id = object_id

    def __str__(self) -> str:
        parts = [self.message]
        if self.object_id:
            parts.append(f"object_id={self.object_id}")
        return " ".join(parts)


class ObjectNotFoundError(ObjectStorageError):
    """Raised when no record exists for the requested id.

    Also raised when a read races a delete and the blob disappears after
    the metadata lookup succeeded.
    """

    def __init__(
        self,
        message: str = "Object not found",
        *,
        object_id: str | None = None,
    ) -> None:
        super().__init__(message, object_id=object_id)


class ObjectExpiredError(ObjectStorageError):
    """Raised when a record exists but its TTL has elapsed."""

    def __init__(
        self,
        message: str = "Object has expired",
        *,
        object_id: str | None = None,
        expires_at: datetime | None = None,
    ) -> None:
        super().__init__(message, object_id=object_id)
        self.expires_at = expires_at


class InvalidObjectIdError(ObjectStorageError):
    """Raised when an identifier is not 32 lowercase hex characters.

    Ids are used as filesystem names, so anything else is rejected before a
    path is ever built from it.
    """

    def __init__(
        self,
        message: str = "Invalid object id",
        *,
        object_id: str | None = None,
    ) -> None:
        super().__init__(message, object_id=object_id)


class StorageBackendError(ObjectStorageError):
    """Raised when the storage backend cannot complete an operation.

    This error indicates the backend itself failed (disk full, permission
    denied, unreadable metadata) rather than a logical outcome like
    not found or expired.
    """

    def __init__(
        self,
        message: str = "Storage backend error",
        *,
        object_id: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, object_id=object_id)
        self.cause = cause
