"""Object storage interface definition.

Provides the ObjectStore interface that all storage backends must implement.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import BinaryIO

from ephemstore.storage.errors import ObjectStorageError
from ephemstore.storage.models import ObjectRecord, StoredObject

TTLValue = timedelta | int | float | None


class ObjectStore(ABC):
    """Abstract base class for TTL-aware object storage backends.

    All implementations must provide:
    - Generated 128-bit hex identifiers
    - Lazy expiry on every read
    - Idempotent deletion
    - Metadata readable independently of content

    Implementations:
    - FilesystemObjectStore: metadata and blobs as files under one directory
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability."""
        ...

    @abstractmethod
    def create(
        self,
        stream: BinaryIO | bytes,
        name: str,
        content_type: str,
        ttl: TTLValue = None,
    ) -> ObjectRecord:
        """Store new content under a freshly generated id.

        Args:
            stream: Binary file-like object (drained fully) or raw bytes.
            name: Display name, stored as opaque metadata.
            content_type: MIME type, stored as opaque metadata.
            ttl: Time to live. None or non-positive selects the store default.

        Returns:
            The record written for the new object.

        Raises:
            ValueError: If ttl pushes expires_at past datetime.max. Nothing
                is written.
            StorageBackendError: If reading the stream or writing fails.
        """
        ...

    @abstractmethod
    def get(self, object_id: str) -> StoredObject:
        """Retrieve an object and its content.

        Raises:
            InvalidObjectIdError: If object_id is malformed.
            ObjectNotFoundError: If the object does not exist.
            ObjectExpiredError: If the object's TTL has elapsed.
            StorageBackendError: If the backend cannot complete the read.
        """
        ...

    @abstractmethod
    def get_metadata(self, object_id: str) -> ObjectRecord:
        """Get object metadata without reading content.

        Raises:
            InvalidObjectIdError: If object_id is malformed.
            ObjectNotFoundError: If the object does not exist.
            ObjectExpiredError: If the object's TTL has elapsed.
            StorageBackendError: If the metadata cannot be read.
        """
        ...

    @abstractmethod
    def delete(self, object_id: str) -> None:
        """Delete an object. Deleting a missing object is not an error.

        Raises:
            InvalidObjectIdError: If object_id is malformed.
            StorageBackendError: If the backend cannot complete the deletion.
        """
        ...

    @abstractmethod
    def purge_expired(self) -> int:
        """Delete every expired object in one pass.

        Returns:
            Number of objects deleted.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop any background reclamation owned by the store."""
        ...

    def exists(self, object_id: str) -> bool:
        """Return True if the object exists and has not expired."""
        try:
            self.get_metadata(object_id)
        except ObjectStorageError:
            return False
        return True
