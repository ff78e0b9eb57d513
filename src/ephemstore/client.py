"""HTTP client for an ephemstore server.

Signs mutating requests with an RSA private key using the canonical
"{METHOD}:{path}:{timestamp}" string. Reads are sent unsigned.

Environment Variables:
    EPHEMSTORE_SERVER_URL: Base URL of the server (default: http://localhost:8080)
    EPHEMSTORE_PRIVATE_KEY_PATH: PEM private key used to sign requests
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa

from ephemstore.auth.canonical import sign_request

logger = logging.getLogger(__name__)

EPHEMSTORE_SERVER_URL_ENV = "EPHEMSTORE_SERVER_URL"
EPHEMSTORE_PRIVATE_KEY_PATH_ENV = "EPHEMSTORE_PRIVATE_KEY_PATH"
DEFAULT_SERVER_URL = "http://localhost:8080"
DEFAULT_TIMEOUT_SECONDS = 30.0

UPLOAD_PATH = "/api/v1/upload"


class ClientError(Exception):
    """Raised when the server answers with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the server.
        code: Error code from the response envelope, if any.
        message: Error message from the response envelope, or the raw body.
    """

    def __init__(self, status_code: int, code: str | None, message: str) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


@dataclass(frozen=True)
class DownloadedObject:
    """Content and descriptive headers returned by a download."""

    content: bytes
    content_type: str
    name: str
    upload_time: str | None
    expires_at: str | None


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        payload = response.json()
    except ValueError:
        raise ClientError(response.status_code, None, response.text) from None
    if isinstance(payload, dict):
        raise ClientError(
            response.status_code,
            payload.get("code"),
            str(payload.get("message") or payload),
        )
    raise ClientError(response.status_code, None, str(payload))


class EphemstoreClient:
    """Thin synchronous client over httpx.

    Args:
        base_url: Server base URL.
        private_key: RSA key for signing upload/delete. Required for those calls.
        sign_form_fields: Include form fields in the signed string (must match
            the server's setting).
        transport: Optional httpx transport (tests).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        *,
        private_key: rsa.RSAPrivateKey | None = None,
        sign_form_fields: bool = False,
        transport: httpx.BaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._private_key = private_key
        self._sign_form_fields = sign_form_fields
        self._http = httpx.Client(base_url=base_url, transport=transport, timeout=timeout)

    def __enter__(self) -> EphemstoreClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _signed_headers(
        self,
        method: str,
        path: str,
        form_fields: dict[str, str] | None = None,
    ) -> dict[str, str]:
        if self._private_key is None:
            raise ValueError("A private key is required for signed requests")
        signed = sign_request(
            method,
            path,
            self._private_key,
            form_fields=form_fields if self._sign_form_fields else None,
        )
        return signed.headers

    def health(self) -> dict[str, Any]:
        response = self._http.get("/health")
        _raise_for_status(response)
        return response.json()

    def upload(
        self,
        file_path: str | Path,
        *,
        ttl: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        """Upload a file and return the server's record (with download_url)."""
        file_path = Path(file_path)
        form_fields = {"ttl": ttl} if ttl else {}
        headers = self._signed_headers("POST", UPLOAD_PATH, form_fields)

        with file_path.open("rb") as fh:
            response = self._http.post(
                UPLOAD_PATH,
                data=form_fields,
                files={"file": (file_path.name, fh, content_type)},
                headers=headers,
            )
        _raise_for_status(response)
        record = response.json()
        logger.debug("Uploaded %s as object=%s", file_path.name, record.get("id"))
        return record

    def download(self, object_id: str) -> DownloadedObject:
        response = self._http.get(f"/api/v1/download/{object_id}")
        _raise_for_status(response)
        return DownloadedObject(
            content=response.content,
            content_type=response.headers.get("Content-Type", ""),
            name=unquote(response.headers.get("X-File-Name", "")),
            upload_time=response.headers.get("X-Upload-Time"),
            expires_at=response.headers.get("X-Expires-At"),
        )

    def metadata(self, object_id: str) -> dict[str, Any]:
        response = self._http.get(f"/api/v1/file/{object_id}/metadata")
        _raise_for_status(response)
        return response.json()

    def delete(self, object_id: str) -> dict[str, Any]:
        path = f"/api/v1/file/{object_id}"
        response = self._http.delete(path, headers=self._signed_headers("DELETE", path))
        _raise_for_status(response)
        return response.json()
