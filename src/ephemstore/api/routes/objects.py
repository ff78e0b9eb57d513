"""Object routes: upload, download, metadata and delete.

Upload and delete pass through the RequestAuthorizationGate; download and
metadata are unauthenticated. The gate runs before any content is stored.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from urllib.parse import quote

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from ephemstore.api.errors import EphemstoreHttpError
from ephemstore.auth.canonical import format_timestamp
from ephemstore.auth.gate import RequestAuthorizationGate
from ephemstore.config import parse_duration
from ephemstore.storage.models import ObjectRecord
from ephemstore.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Objects"])

FILE_FIELD = "file"
TTL_FIELD = "ttl"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_UNSAFE_FILENAME_CHARS = re.compile(r'[\x00-\x1f\x7f"\\]')


class ObjectMetadataResponse(BaseModel):
    """Stored object metadata."""

    id: str
    name: str
    size: int
    content_type: str
    upload_time: datetime
    expires_at: datetime

    @classmethod
    def from_record(cls, record: ObjectRecord) -> ObjectMetadataResponse:
        return cls(
            id=record.id,
            name=record.name,
            size=record.size,
            content_type=record.content_type,
            upload_time=record.upload_time,
            expires_at=record.expires_at,
        )


class UploadResponse(ObjectMetadataResponse):
    """Upload result including the URL the content can be fetched from."""

    download_url: str


class DeleteResponse(BaseModel):
    message: str


def _get_store(request: Request) -> ObjectStore:
    store: ObjectStore | None = getattr(request.app.state, "store", None)
    if store is None:
        raise EphemstoreHttpError(503, "SERVICE_UNAVAILABLE", "Storage is not configured")
    return store


def _get_gate(request: Request) -> RequestAuthorizationGate:
    gate: RequestAuthorizationGate | None = getattr(request.app.state, "gate", None)
    if gate is None:
        raise EphemstoreHttpError(503, "SERVICE_UNAVAILABLE", "Authentication is not configured")
    return gate


def _content_disposition(name: str) -> str:
    """Build an attachment header safe for arbitrary display names."""
    fallback = _UNSAFE_FILENAME_CHARS.sub("_", name).encode("ascii", "replace").decode("ascii")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"


@router.post("/upload", response_model=UploadResponse)
async def upload_file(request: Request) -> UploadResponse:
    """Store an uploaded file (multipart field "file", optional "ttl")."""
    gate = _get_gate(request)
    store = _get_store(request)

    form = await request.form()
    try:
        form_fields = {key: value for key, value in form.multi_items() if isinstance(value, str)}
        gate.authorize(request.method, request.url.path, request.headers, form_fields)

        upload = form.get(FILE_FIELD)
        if not isinstance(upload, UploadFile):
            raise EphemstoreHttpError(400, "BAD_REQUEST", "file is required")

        ttl = None
        raw_ttl = form_fields.get(TTL_FIELD, "").strip()
        if raw_ttl:
            try:
                ttl = parse_duration(raw_ttl)
            except ValueError as e:
                raise EphemstoreHttpError(400, "BAD_REQUEST", "invalid ttl") from e

        try:
            record = await run_in_threadpool(
                store.create,
                upload.file,
                upload.filename or "",
                upload.content_type or DEFAULT_CONTENT_TYPE,
                ttl,
            )
        except ValueError as e:
            raise EphemstoreHttpError(400, "BAD_REQUEST", "invalid ttl") from e
    finally:
        await form.close()

    logger.info("Uploaded object=%s size=%d", record.id, record.size)
    return UploadResponse(
        **ObjectMetadataResponse.from_record(record).model_dump(),
        download_url=str(request.url_for("download_file", object_id=record.id)),
    )


@router.get("/download/{object_id}", name="download_file")
def download_file(object_id: str, request: Request) -> Response:
    """Return the raw content of an unexpired object."""
    stored = _get_store(request).get(object_id)
    record = stored.record

    headers = {
        "Content-Disposition": _content_disposition(record.name),
        "X-File-Name": quote(record.name, safe=""),
        "X-Upload-Time": format_timestamp(record.upload_time),
        "X-Expires-At": format_timestamp(record.expires_at),
    }
    return Response(
        content=stored.body,
        media_type=record.content_type or DEFAULT_CONTENT_TYPE,
        headers=headers,
    )


@router.get("/file/{object_id}/metadata", response_model=ObjectMetadataResponse)
def get_file_metadata(object_id: str, request: Request) -> ObjectMetadataResponse:
    """Return metadata for an unexpired object."""
    record = _get_store(request).get_metadata(object_id)
    return ObjectMetadataResponse.from_record(record)


@router.delete("/file/{object_id}", response_model=DeleteResponse)
def delete_file(object_id: str, request: Request) -> DeleteResponse:
    """Delete an object. Deleting an absent object succeeds."""
    _get_gate(request).authorize(request.method, request.url.path, request.headers)
    _get_store(request).delete(object_id)

    logger.info("Deleted object=%s", object_id)
    return DeleteResponse(message="file deleted successfully")
