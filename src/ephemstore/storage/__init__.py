"""Ephemeral object storage.

Stores content under generated ids with a per-object time to live. Expired
objects are never returned by reads, and a background loop reclaims them
without waiting for a read.

Backends:
- FilesystemObjectStore: metadata and content files under one base directory

Environment Variables:
    EPHEMSTORE_STORAGE_DIR: Base directory for the filesystem backend
        (default: ./storage)
"""

from ephemstore.storage.errors import (
    InvalidObjectIdError,
    ObjectExpiredError,
    ObjectNotFoundError,
    ObjectStorageError,
    StorageBackendError,
)
from ephemstore.storage.filesystem_store import FilesystemObjectStore, generate_object_id
from ephemstore.storage.models import ObjectRecord, StoredObject
from ephemstore.storage.object_store import ObjectStore
from ephemstore.storage.reclaimer import ReclamationLoop

__all__ = [
    "FilesystemObjectStore",
    "InvalidObjectIdError",
    "ObjectExpiredError",
    "ObjectNotFoundError",
    "ObjectRecord",
    "ObjectStorageError",
    "ObjectStore",
    "ReclamationLoop",
    "StorageBackendError",
    "StoredObject",
    "generate_object_id",
]
