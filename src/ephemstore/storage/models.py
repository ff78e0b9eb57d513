"""Object storage data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


def _parse_timestamp(raw: Any, field: str) -> datetime:
    """Parse an RFC 3339 timestamp, rejecting values without an offset."""
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str):
        value = datetime.fromisoformat(raw)
    else:
        raise TypeError(f"{field} must be an RFC 3339 string")

    if value.tzinfo is None:
        raise ValueError(f"{field} has no UTC offset")
    return value.astimezone(UTC)


@dataclass(frozen=True)
class ObjectRecord:
    """Metadata for a stored object.

    Attributes:
        id: 32 lowercase hex characters, assigned once at creation.
        name: Caller-supplied display name. Opaque: never used as a path.
        size: Content length in bytes at creation time.
        content_type: Caller-supplied MIME type, opaque to the store.
        upload_time: When the content finished persisting (UTC).
        expires_at: upload_time + ttl (UTC).
    """

    id: str
    name: str
    size: int
    content_type: str
    upload_time: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Return True once now has reached expires_at."""
        return now >= self.expires_at

    def to_dict(self) -> dict[str, str | int]:
        """Convert the record to its JSON wire format."""
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "content_type": self.content_type,
            "upload_time": self.upload_time.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObjectRecord:
        """Create a record from its JSON wire format.

        Raises:
            KeyError: If a required field is missing.
            TypeError: If a field has the wrong type.
            ValueError: If a timestamp cannot be parsed.
        """
        size_raw = data["size"]
        if isinstance(size_raw, bool) or not isinstance(size_raw, int):
            raise TypeError("size must be an integer")

        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            size=size_raw,
            content_type=str(data.get("content_type") or ""),
            upload_time=_parse_timestamp(data["upload_time"], "upload_time"),
            expires_at=_parse_timestamp(data["expires_at"], "expires_at"),
        )


@dataclass(frozen=True)
class StoredObject:
    """A stored object with metadata and body content.

    Attributes:
        record: Object metadata.
        body: Object content as bytes.
    """

    record: ObjectRecord
    body: bytes
