"""Tests for the ephemstore filesystem object store.

Covers:
- Roundtrip: create then get returns identical bytes and metadata
- TTL: objects are readable before expires_at and expired at it
- Ids: generated ids are 32 lowercase hex; anything else is rejected
- Delete: idempotent, removes both files
- Rollback: a failed metadata write leaves no content behind
- Purge: expired objects are reclaimed, malformed entries skipped
- Concurrency: parallel creates never collide
"""

from __future__ import annotations

import io
import json
import re
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from ephemstore.storage.errors import (
    InvalidObjectIdError,
    ObjectExpiredError,
    ObjectNotFoundError,
    StorageBackendError,
)
from ephemstore.storage.filesystem_store import FilesystemObjectStore, generate_object_id
from ephemstore.storage.models import ObjectRecord
from ephemstore.storage.tracing import EPHEMSTORE_OTEL_ENABLED_ENV
from ephemstore.testing import START_TIME, FixedClock

HEX_ID = re.compile(r"^[0-9a-f]{32}$")


@pytest.fixture
def store(temp_storage_dir: Path, clock: FixedClock) -> Iterator[FilesystemObjectStore]:
    """Create a store with a fixed clock and no background sweeper."""
    with FilesystemObjectStore(
        temp_storage_dir,
        default_ttl=timedelta(hours=1),
        clock=clock,
        start_reclaimer=False,
    ) as fs_store:
        yield fs_store


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestRoundtrip:
    """Tests for basic create/get roundtrip functionality."""

    def test_create_then_get_returns_identical_bytes(self, store: FilesystemObjectStore) -> None:
        """Create then get should return the stored bytes and record."""
        data = b"Hello, World! This is test content."

        record = store.create(data, "hello.txt", "text/plain")
        result = store.get(record.id)

        assert result.body == data
        assert result.record == record
        assert result.record.name == "hello.txt"
        assert result.record.content_type == "text/plain"

    def test_create_from_stream(self, store: FilesystemObjectStore) -> None:
        """A file-like stream is drained in full."""
        data = b"x" * (200 * 1024 + 17)

        record = store.create(io.BytesIO(data), "big.bin", "application/octet-stream")

        assert record.size == len(data)
        assert store.get(record.id).body == data

    def test_empty_content(self, store: FilesystemObjectStore) -> None:
        """Empty content is stored with size 0."""
        record = store.create(b"", "empty.bin", "application/octet-stream")

        assert record.size == 0
        assert store.get(record.id).body == b""

    def test_record_times(self, store: FilesystemObjectStore) -> None:
        """upload_time comes from the clock; expires_at adds the TTL."""
        record = store.create(b"data", "a.txt", "text/plain", ttl=timedelta(minutes=10))

        assert record.upload_time == START_TIME
        assert record.expires_at == START_TIME + timedelta(minutes=10)

    def test_numeric_ttl_is_seconds(self, store: FilesystemObjectStore) -> None:
        """An int or float TTL is taken as seconds."""
        record = store.create(b"data", "a.txt", "text/plain", ttl=90)

        assert record.expires_at - record.upload_time == timedelta(seconds=90)

    @pytest.mark.parametrize("ttl", [None, 0, -5, timedelta(0), timedelta(seconds=-1)])
    def test_non_positive_ttl_uses_default(self, store: FilesystemObjectStore, ttl: object) -> None:
        """Missing, zero or negative TTL falls back to the store default."""
        record = store.create(b"data", "a.txt", "text/plain", ttl=ttl)  # type: ignore[arg-type]

        assert record.expires_at - record.upload_time == store.default_ttl

    def test_files_laid_out_by_id(self, store: FilesystemObjectStore) -> None:
        """Metadata and content live in separate directories keyed by id."""
        record = store.create(b"layout", "../../etc/passwd", "text/plain")

        meta_file = store.base_dir / "metadata" / f"{record.id}.json"
        blob_file = store.base_dir / "files" / record.id

        assert meta_file.is_file()
        assert blob_file.read_bytes() == b"layout"
        assert json.loads(meta_file.read_text())["name"] == "../../etc/passwd"

    def test_no_temp_files_left_behind(self, store: FilesystemObjectStore) -> None:
        """Successful writes leave no temp files."""
        store.create(b"data", "a.txt", "text/plain")

        leftovers = list(store.base_dir.rglob("*.tmp"))
        assert leftovers == []

    def test_exists(self, store: FilesystemObjectStore) -> None:
        """exists() is True for a live object and False otherwise."""
        record = store.create(b"data", "a.txt", "text/plain")

        assert store.exists(record.id) is True
        assert store.exists(generate_object_id()) is False
        assert store.exists("not-an-id") is False


class TestObjectIds:
    """Tests for id generation and validation."""

    def test_generated_ids_are_hex(self) -> None:
        """Generated ids are 32 lowercase hex characters."""
        for _ in range(100):
            assert HEX_ID.match(generate_object_id())

    def test_create_assigns_unique_ids(self, store: FilesystemObjectStore) -> None:
        """Each create gets a fresh id."""
        ids = {store.create(b"x", "a", "text/plain").id for _ in range(50)}

        assert len(ids) == 50

    @pytest.mark.parametrize(
        "bad_id",
        [
            "",
            "abc",
            "../" + "a" * 29,
            "A" * 32,
            "g" * 32,
            "a" * 31,
            "a" * 33,
            "a" * 16 + "/" + "a" * 15,
        ],
    )
    def test_invalid_ids_rejected(self, store: FilesystemObjectStore, bad_id: str) -> None:
        """Ids that are not 32 lowercase hex characters are rejected everywhere."""
        with pytest.raises(InvalidObjectIdError):
            store.get(bad_id)
        with pytest.raises(InvalidObjectIdError):
            store.get_metadata(bad_id)
        with pytest.raises(InvalidObjectIdError):
            store.delete(bad_id)


class TestNotFound:
    """Tests for lookups of unknown objects."""

    def test_get_unknown_id(self, store: FilesystemObjectStore) -> None:
        """get() of an unknown id raises ObjectNotFoundError."""
        with pytest.raises(ObjectNotFoundError) as exc_info:
            store.get(generate_object_id())

        assert exc_info.value.object_id is not None

    def test_get_metadata_unknown_id(self, store: FilesystemObjectStore) -> None:
        """get_metadata() of an unknown id raises ObjectNotFoundError."""
        with pytest.raises(ObjectNotFoundError):
            store.get_metadata(generate_object_id())

    def test_blob_missing_after_metadata_read(self, store: FilesystemObjectStore) -> None:
        """A blob removed between the two reads reports not found."""
        record = store.create(b"data", "a.txt", "text/plain")
        (store.base_dir / "files" / record.id).unlink()

        with pytest.raises(ObjectNotFoundError):
            store.get(record.id)

    def test_corrupt_metadata_is_backend_error(self, store: FilesystemObjectStore) -> None:
        """Unparsable metadata is a backend fault, not a not-found."""
        record = store.create(b"data", "a.txt", "text/plain")
        (store.base_dir / "metadata" / f"{record.id}.json").write_text("{not json")

        with pytest.raises(StorageBackendError):
            store.get_metadata(record.id)


class TestExpiry:
    """Tests for TTL enforcement on reads."""

    def test_readable_just_before_expiry(
        self, store: FilesystemObjectStore, clock: FixedClock
    ) -> None:
        """An object is returned up to the instant before expires_at."""
        record = store.create(b"data", "a.txt", "text/plain", ttl=60)
        clock.now = record.expires_at - timedelta(microseconds=1)

        assert store.get(record.id).body == b"data"
        assert store.get_metadata(record.id) == record

    def test_expired_at_expires_at(self, store: FilesystemObjectStore, clock: FixedClock) -> None:
        """At exactly expires_at the object is expired."""
        record = store.create(b"data", "a.txt", "text/plain", ttl=60)
        clock.now = record.expires_at

        with pytest.raises(ObjectExpiredError) as exc_info:
            store.get_metadata(record.id)

        assert exc_info.value.expires_at == record.expires_at

    def test_get_metadata_does_not_evict(
        self, store: FilesystemObjectStore, clock: FixedClock
    ) -> None:
        """Expired metadata reads leave the files in place."""
        record = store.create(b"data", "a.txt", "text/plain", ttl=60)
        clock.advance(120)

        with pytest.raises(ObjectExpiredError):
            store.get_metadata(record.id)

        assert (store.base_dir / "files" / record.id).exists()

    def test_expired_get_evicts(self, store: FilesystemObjectStore, clock: FixedClock) -> None:
        """An expired get schedules deletion; later reads report not found."""
        record = store.create(b"data", "a.txt", "text/plain", ttl=60)
        clock.advance(61)

        with pytest.raises(ObjectExpiredError):
            store.get(record.id)

        meta_file = store.base_dir / "metadata" / f"{record.id}.json"
        blob_file = store.base_dir / "files" / record.id
        assert _wait_for(lambda: not meta_file.exists() and not blob_file.exists())

        with pytest.raises(ObjectNotFoundError):
            store.get(record.id)


class TestDelete:
    """Tests for delete."""

    def test_delete_removes_both_files(self, store: FilesystemObjectStore) -> None:
        """Delete removes the metadata and the content."""
        record = store.create(b"data", "a.txt", "text/plain")

        store.delete(record.id)

        assert not (store.base_dir / "metadata" / f"{record.id}.json").exists()
        assert not (store.base_dir / "files" / record.id).exists()
        with pytest.raises(ObjectNotFoundError):
            store.get(record.id)

    def test_delete_is_idempotent(self, store: FilesystemObjectStore) -> None:
        """Deleting twice, or deleting an unknown id, succeeds."""
        record = store.create(b"data", "a.txt", "text/plain")

        store.delete(record.id)
        store.delete(record.id)
        store.delete(generate_object_id())

    def test_delete_with_only_blob_present(self, store: FilesystemObjectStore) -> None:
        """An orphan blob is removed."""
        record = store.create(b"data", "a.txt", "text/plain")
        (store.base_dir / "metadata" / f"{record.id}.json").unlink()

        store.delete(record.id)

        assert not (store.base_dir / "files" / record.id).exists()


class TestRollback:
    """Tests for partial-failure cleanup during create."""

    def test_metadata_failure_removes_blob(
        self, store: FilesystemObjectStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """If metadata cannot be written, the content is removed and the error surfaces."""

        def failing_write(record: ObjectRecord) -> None:
            raise StorageBackendError("disk full", object_id=record.id)

        monkeypatch.setattr(store, "_write_metadata", failing_write)

        with pytest.raises(StorageBackendError):
            store.create(b"data", "a.txt", "text/plain")

        assert list((store.base_dir / "files").iterdir()) == []
        assert list((store.base_dir / "metadata").iterdir()) == []

    def test_unrepresentable_expiry_writes_nothing(self, store: FilesystemObjectStore) -> None:
        """A ttl that overflows expires_at is rejected before any content is stored."""
        with pytest.raises(ValueError):
            store.create(b"payload", "a.txt", "text/plain", ttl=timedelta(days=999_999_000))

        assert list((store.base_dir / "files").iterdir()) == []
        assert list((store.base_dir / "metadata").iterdir()) == []

    def test_oversized_numeric_ttl_rejected(self, store: FilesystemObjectStore) -> None:
        with pytest.raises(ValueError):
            store.create(b"payload", "a.txt", "text/plain", ttl=10**30)

        assert list((store.base_dir / "files").iterdir()) == []

    def test_record_failure_after_blob_removes_blob(
        self, store: FilesystemObjectStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Any failure between the blob write and the metadata write rolls back."""
        calls = {"n": 0}
        real_expiry = store._expiry

        def expiry_fails_second_time(upload_time: datetime, ttl: timedelta) -> datetime:
            calls["n"] += 1
            if calls["n"] > 1:
                raise ValueError("clock moved past datetime.max")
            return real_expiry(upload_time, ttl)

        monkeypatch.setattr(store, "_expiry", expiry_fails_second_time)

        with pytest.raises(ValueError):
            store.create(b"data", "a.txt", "text/plain")

        assert list((store.base_dir / "files").iterdir()) == []
        assert list((store.base_dir / "metadata").iterdir()) == []

    def test_closed_stream_leaves_no_temp_file(self, store: FilesystemObjectStore) -> None:
        """A stream that fails to read surfaces as a backend error with no leftovers."""
        stream = io.BytesIO(b"data")
        stream.close()

        with pytest.raises(StorageBackendError) as exc_info:
            store.create(stream, "a.txt", "text/plain")

        assert isinstance(exc_info.value.cause, ValueError)
        assert list((store.base_dir / "files").iterdir()) == []
        assert list((store.base_dir / "metadata").iterdir()) == []

    def test_stream_failure_midway_leaves_no_temp_file(self, store: FilesystemObjectStore) -> None:
        class BrokenStream(io.RawIOBase):
            def __init__(self) -> None:
                self.reads = 0

            def readable(self) -> bool:
                return True

            def read(self, size: int = -1) -> bytes:
                self.reads += 1
                if self.reads > 1:
                    raise RuntimeError("connection reset")
                return b"x" * 16

        with pytest.raises(StorageBackendError):
            store.create(BrokenStream(), "a.txt", "text/plain")  # type: ignore[arg-type]

        assert list((store.base_dir / "files").iterdir()) == []


class TestPurgeExpired:
    """Tests for purge_expired."""

    def test_purges_only_expired(self, store: FilesystemObjectStore, clock: FixedClock) -> None:
        """Only objects whose expires_at has passed are removed."""
        short = store.create(b"short", "s.txt", "text/plain", ttl=60)
        long = store.create(b"long", "l.txt", "text/plain", ttl=3600)
        clock.advance(60)

        assert store.purge_expired() == 1

        assert not (store.base_dir / "files" / short.id).exists()
        assert store.get(long.id).body == b"long"

    def test_purge_with_nothing_expired(self, store: FilesystemObjectStore) -> None:
        """A sweep with nothing to do returns 0."""
        store.create(b"data", "a.txt", "text/plain")

        assert store.purge_expired() == 0

    def test_malformed_entries_are_skipped(
        self, store: FilesystemObjectStore, clock: FixedClock
    ) -> None:
        """Unreadable metadata does not stop the sweep and is left in place."""
        expired = store.create(b"data", "a.txt", "text/plain", ttl=60)
        bad_id = generate_object_id()
        bad_file = store.base_dir / "metadata" / f"{bad_id}.json"
        bad_file.write_text('{"id": "' + bad_id + '"}')
        stray_file = store.base_dir / "metadata" / "README.json"
        stray_file.write_text("{}")
        clock.advance(120)

        assert store.purge_expired() == 1

        assert not (store.base_dir / "files" / expired.id).exists()
        assert bad_file.exists()
        assert stray_file.exists()


class TestReclamationLoop:
    """Tests for the background sweeper bound to a store."""

    def test_background_sweep_reclaims_without_reads(
        self, temp_storage_dir: Path, clock: FixedClock
    ) -> None:
        """Expired objects disappear with no read of their own."""
        with FilesystemObjectStore(
            temp_storage_dir,
            sweep_interval=timedelta(milliseconds=20),
            clock=clock,
        ) as fs_store:
            record = fs_store.create(b"data", "a.txt", "text/plain", ttl=60)
            clock.advance(61)

            meta_file = temp_storage_dir / "metadata" / f"{record.id}.json"
            assert _wait_for(lambda: not meta_file.exists())
            assert fs_store.reclaimer.running

        assert _wait_for(lambda: not fs_store.reclaimer.running)

    def test_stop_is_idempotent(self, temp_storage_dir: Path) -> None:
        """Stopping twice is harmless."""
        fs_store = FilesystemObjectStore(temp_storage_dir)

        fs_store.stop()
        fs_store.stop()

    def test_rejects_non_positive_default_ttl(self, temp_storage_dir: Path) -> None:
        """A store needs a positive default TTL."""
        with pytest.raises(ValueError):
            FilesystemObjectStore(temp_storage_dir, default_ttl=timedelta(0))


class TestConcurrency:
    """Tests for concurrent use."""

    def test_parallel_creates_are_distinct(self, store: FilesystemObjectStore) -> None:
        """Many parallel creates produce distinct, readable objects."""
        count = 1000

        def create(i: int) -> ObjectRecord:
            return store.create(f"payload-{i}".encode(), f"{i}.txt", "text/plain")

        with ThreadPoolExecutor(max_workers=16) as pool:
            records = list(pool.map(create, range(count)))

        assert len({r.id for r in records}) == count
        for i, record in enumerate(records):
            assert store.get(record.id).body == f"payload-{i}".encode()

    def test_parallel_reads_and_deletes(self, store: FilesystemObjectStore) -> None:
        """Reads racing deletes see either the object or not-found."""
        records = [store.create(b"data", f"{i}.txt", "text/plain") for i in range(50)]

        def read(record: ObjectRecord) -> str:
            try:
                store.get(record.id)
            except ObjectNotFoundError:
                return "missing"
            return "found"

        with ThreadPoolExecutor(max_workers=8) as pool:
            deletes = [pool.submit(store.delete, r.id) for r in records]
            outcomes = list(pool.map(read, records))
            for future in deletes:
                future.result()

        assert set(outcomes) <= {"found", "missing"}


class TestTracingToggle:
    """Tests for operations with the tracing flag on."""

    def test_operations_work_with_tracing_enabled(
        self, store: FilesystemObjectStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Enabling spans does not change results (with or without opentelemetry)."""
        monkeypatch.setenv(EPHEMSTORE_OTEL_ENABLED_ENV, "1")

        record = store.create(b"traced", "t.txt", "text/plain")

        assert store.get(record.id).body == b"traced"
        store.delete(record.id)
        with pytest.raises(ObjectNotFoundError):
            store.get_metadata(record.id)
