"""Filesystem object storage backend.

Objects are stored as two independently readable files sharing one id:

    {base_dir}/metadata/{id}.json   # ObjectRecord wire format
    {base_dir}/files/{id}           # content

Every write lands in a temp file in the same directory and is then renamed
into place, so readers see either nothing or the complete file.

Environment Variables:
    EPHEMSTORE_STORAGE_DIR: Base directory for storage (default: ./storage)
"""

from __future__ import annotations

import json
import logging
import os
import re
import secrets
import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import TracebackType
from typing import BinaryIO

from ephemstore.config import (
    DEFAULT_STORAGE_DIR,
    DEFAULT_SWEEP_INTERVAL,
    DEFAULT_TTL,
    EPHEMSTORE_STORAGE_DIR_ENV,
    Settings,
)
from ephemstore.storage.errors import (
    InvalidObjectIdError,
    ObjectExpiredError,
    ObjectNotFoundError,
    ObjectStorageError,
    StorageBackendError,
)
from ephemstore.storage.models import ObjectRecord, StoredObject
from ephemstore.storage.object_store import ObjectStore, TTLValue
from ephemstore.storage.reclaimer import ReclamationLoop
from ephemstore.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

_OBJECT_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")

_METADATA_DIR = "metadata"
_FILES_DIR = "files"
_METADATA_SUFFIX = ".json"
_CHUNK_SIZE = 64 * 1024


def generate_object_id() -> str:
    """Return 128 random bits as 32 lowercase hex characters."""
    return secrets.token_hex(16)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _validate_object_id(object_id: str) -> None:
    """Reject ids that are not exactly 32 lowercase hex characters."""
    if not isinstance(object_id, str) or not _OBJECT_ID_PATTERN.match(object_id):
        raise InvalidObjectIdError(object_id=str(object_id)[:64])


class FilesystemObjectStore(ObjectStore):
    """Filesystem-based TTL object store.

    Reads perform no locking. Deletes are serialized by a single store-wide
    lock held across the remove-metadata-then-remove-blob sequence, which
    bounds the window in which one file exists without the other.

    A background ReclamationLoop purges expired objects every
    sweep_interval until stop() is called.
    """

    def __init__(
        self,
        base_dir: str | Path | None = None,
        *,
        default_ttl: timedelta = DEFAULT_TTL,
        sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], datetime] | None = None,
        start_reclaimer: bool = True,
    ) -> None:
        """Initialize filesystem storage.

        Args:
            base_dir: Base directory for storage. If None, uses
                EPHEMSTORE_STORAGE_DIR or ./storage.
            default_ttl: Lifetime applied when a caller supplies no TTL.
            sweep_interval: Time between reclamation sweeps.
            clock: Returns the current timezone-aware time. Defaults to UTC now.
            start_reclaimer: Start the background reclamation loop.

        Raises:
            ValueError: If default_ttl is not positive.
            StorageBackendError: If the storage directories cannot be created.
        """
        if default_ttl.total_seconds() <= 0:
            raise ValueError("default_ttl must be positive")

        if base_dir is None:
            base_dir = os.environ.get(EPHEMSTORE_STORAGE_DIR_ENV) or DEFAULT_STORAGE_DIR

        self._base_dir = Path(base_dir).resolve()
        self._metadata_dir = self._base_dir / _METADATA_DIR
        self._files_dir = self._base_dir / _FILES_DIR
        self._default_ttl = default_ttl
        self._clock = clock or _utc_now
        self._delete_lock = threading.Lock()

        for directory in (self._base_dir, self._metadata_dir, self._files_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageBackendError(
                    message=f"Failed to create directory {directory.name}: {e}",
                    cause=e,
                ) from e

        self._reclaimer = ReclamationLoop(self.purge_expired, sweep_interval)
        if start_reclaimer:
            self._reclaimer.start()

        logger.debug("FilesystemObjectStore initialized with base_dir=%s", self._base_dir)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        start_reclaimer: bool = True,
    ) -> FilesystemObjectStore:
        """Create a store from application settings."""
        return cls(
            settings.storage_dir,
            default_ttl=settings.default_ttl,
            sweep_interval=settings.sweep_interval,
            start_reclaimer=start_reclaimer,
        )

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "filesystem"

    @property
    def base_dir(self) -> Path:
        """Return the base directory path."""
        return self._base_dir

    @property
    def default_ttl(self) -> timedelta:
        """Return the TTL applied when callers supply none."""
        return self._default_ttl

    @property
    def reclaimer(self) -> ReclamationLoop:
        """Return the background reclamation loop."""
        return self._reclaimer

    def __enter__(self) -> FilesystemObjectStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()

    def _metadata_path(self, object_id: str) -> Path:
        return self._metadata_dir / f"{object_id}{_METADATA_SUFFIX}"

    def _blob_path(self, object_id: str) -> Path:
        return self._files_dir / object_id

    def _resolve_ttl(self, ttl: TTLValue) -> timedelta:
        """Return ttl if positive, else the store default.

        Raises:
            ValueError: If ttl does not fit in a timedelta.
        """
        if ttl is None or isinstance(ttl, bool):
            return self._default_ttl
        if not isinstance(ttl, timedelta):
            try:
                ttl = timedelta(seconds=ttl)
            except OverflowError as e:
                raise ValueError(f"ttl out of range: {ttl!r}") from e
        if ttl.total_seconds() <= 0:
            return self._default_ttl
        return ttl

    @staticmethod
    def _expiry(upload_time: datetime, ttl: timedelta) -> datetime:
        try:
            return upload_time + ttl
        except OverflowError as e:
            raise ValueError(f"ttl {ttl} ends past the latest representable time") from e

    def _write_blob(self, object_id: str, stream: BinaryIO | bytes) -> int:
        """Drain stream into the blob file atomically and return its size.

        The temp file never outlives this call, whatever the stream raises.
        """
        blob_file = self._blob_path(object_id)
        tmp_file = self._files_dir / f".{object_id}.{uuid.uuid4().hex}.tmp"
        size = 0
        try:
            with tmp_file.open("wb") as out:
                if isinstance(stream, (bytes, bytearray, memoryview)):
                    size = out.write(stream)
                else:
                    while True:
                        chunk = stream.read(_CHUNK_SIZE)
                        if not chunk:
                            break
                        size += out.write(chunk)
            tmp_file.replace(blob_file)
        except Exception as e:
            raise StorageBackendError(
                message=f"Failed to write content: {e}",
                object_id=object_id,
                cause=e,
            ) from e
        finally:
            tmp_file.unlink(missing_ok=True)
        return size

    def _write_metadata(self, record: ObjectRecord) -> None:
        """Write the metadata file atomically."""
        meta_file = self._metadata_path(record.id)
        tmp_file = self._metadata_dir / f".{record.id}.{uuid.uuid4().hex}.tmp"
        try:
            tmp_file.write_text(json.dumps(record.to_dict()), encoding="utf-8")
            tmp_file.replace(meta_file)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise StorageBackendError(
                message=f"Failed to write metadata: {e}",
                object_id=record.id,
                cause=e,
            ) from e

    def _rollback_blob(self, object_id: str) -> None:
        """Remove a blob whose metadata could not be written."""
        try:
            self._blob_path(object_id).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to roll back content for object=%s: %s", object_id, e)

    def _read_metadata(self, object_id: str) -> ObjectRecord:
        """Load and parse the metadata file for object_id."""
        meta_file = self._metadata_path(object_id)
        try:
            raw = meta_file.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ObjectNotFoundError(object_id=object_id) from e
        except OSError as e:
            raise StorageBackendError(
                message=f"Failed to read metadata: {e}",
                object_id=object_id,
                cause=e,
            ) from e

        try:
            record = ObjectRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise StorageBackendError(
                message=f"Unreadable metadata: {e}",
                object_id=object_id,
                cause=e,
            ) from e

        if record.id != object_id:
            raise StorageBackendError(
                message="Metadata id does not match its key",
                object_id=object_id,
            )
        return record

    def _lookup_live(self, object_id: str) -> tuple[ObjectRecord, bool]:
        """Return (record, expired) for a validated id."""
        _validate_object_id(object_id)
        record = self._read_metadata(object_id)
        return record, record.is_expired(self._clock())

    def _schedule_eviction(self, object_id: str) -> None:
        """Delete an expired object on a background thread."""
        thread = threading.Thread(
            target=self._evict,
            args=(object_id,),
            name=f"ephemstore-evict-{object_id[:8]}",
            daemon=True,
        )
        thread.start()

    def _evict(self, object_id: str) -> None:
        try:
            self.delete(object_id)
            logger.debug("Evicted expired object=%s", object_id)
        except ObjectStorageError as e:
            logger.warning("Failed to evict expired object=%s: %s", object_id, e)

    @traced_storage_operation("create")
    def create(
        self,
        stream: BinaryIO | bytes,
        name: str,
        content_type: str,
        ttl: TTLValue = None,
    ) -> ObjectRecord:
        """Store new content under a freshly generated id."""
        object_id = generate_object_id()
        effective_ttl = self._resolve_ttl(ttl)
        self._expiry(self._clock(), effective_ttl)

        size = self._write_blob(object_id, stream)

        # A blob never survives without its metadata.
        try:
            upload_time = self._clock()
            record = ObjectRecord(
                id=object_id,
                name=name,
                size=size,
                content_type=content_type,
                upload_time=upload_time,
                expires_at=self._expiry(upload_time, effective_ttl),
            )
            self._write_metadata(record)
        except BaseException:
            self._rollback_blob(object_id)
            raise

        logger.debug(
            "Stored object=%s size=%d expires_at=%s",
            object_id,
            size,
            record.expires_at.isoformat(),
        )
        return record

    @traced_storage_operation("get")
    def get(self, object_id: str) -> StoredObject:
        """Retrieve an object; expired objects are evicted in the background."""
        record, expired = self._lookup_live(object_id)
        if expired:
            self._schedule_eviction(object_id)
            raise ObjectExpiredError(object_id=object_id, expires_at=record.expires_at)

        try:
            body = self._blob_path(object_id).read_bytes()
        except FileNotFoundError as e:
            # Deleted between the metadata read and the content read.
            raise ObjectNotFoundError(
                message="Object content not found",
                object_id=object_id,
            ) from e
        except OSError as e:
            raise StorageBackendError(
                message=f"Failed to read content: {e}",
                object_id=object_id,
                cause=e,
            ) from e

        return StoredObject(record=record, body=body)

    @traced_storage_operation("get_metadata")
    def get_metadata(self, object_id: str) -> ObjectRecord:
        """Get object metadata without reading content."""
        record, expired = self._lookup_live(object_id)
        if expired:
            raise ObjectExpiredError(object_id=object_id, expires_at=record.expires_at)
        return record

    @traced_storage_operation("delete")
    def delete(self, object_id: str) -> None:
        """Delete an object's metadata and content; missing files are ignored."""
        _validate_object_id(object_id)

        with self._delete_lock:
            try:
                self._metadata_path(object_id).unlink(missing_ok=True)
                self._blob_path(object_id).unlink(missing_ok=True)
            except OSError as e:
                raise StorageBackendError(
                    message=f"Failed to delete object: {e}",
                    object_id=object_id,
                    cause=e,
                ) from e

        logger.debug("Deleted object=%s", object_id)

    @traced_storage_operation("purge_expired")
    def purge_expired(self) -> int:
        """Delete every object whose expires_at has passed.

        Unreadable or malformed metadata entries are skipped and left in
        place.
        """
        now = self._clock()
        try:
            entries = sorted(self._metadata_dir.glob(f"*{_METADATA_SUFFIX}"))
        except OSError as e:
            logger.warning("Failed to list metadata directory: %s", e)
            return 0

        purged = 0
        for meta_file in entries:
            object_id = meta_file.name[: -len(_METADATA_SUFFIX)]
            if not _OBJECT_ID_PATTERN.match(object_id):
                logger.debug("Skipping unexpected metadata entry %s", meta_file.name)
                continue

            try:
                record = ObjectRecord.from_dict(
                    json.loads(meta_file.read_text(encoding="utf-8"))
                )
            except FileNotFoundError:
                continue
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping unreadable metadata for object=%s: %s", object_id, e)
                continue

            if not record.is_expired(now):
                continue

            try:
                self.delete(object_id)
            except StorageBackendError as e:
                logger.warning("Failed to purge expired object=%s: %s", object_id, e)
                continue
            purged += 1

        return purged

    def stop(self) -> None:
        """Stop the background reclamation loop."""
        self._reclaimer.stop()
