"""Canonical signing string for authenticated requests.

Protocol contract shared by signing clients and the verifying gate:

    "{METHOD}:{path}:{timestamp}"

- METHOD: upper-case HTTP method.
- path: request path only. Query string and body are not signed.
- timestamp: the exact X-Timestamp header value (RFC 3339).

Form variant, enabled on both sides together: the non-file form fields are
appended as one more ":"-separated segment, encoded as "k1=v1&k2=v2" with
keys in sorted order. An empty field mapping adds nothing.

Headers produced:
- X-Signature: base64 RSA PKCS#1 v1.5 / SHA-256 signature
- X-Timestamp: RFC 3339 timestamp
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from cryptography.hazmat.primitives.asymmetric import rsa

from ephemstore.auth.signature import sign

SIGNATURE_HEADER = "X-Signature"
TIMESTAMP_HEADER = "X-Timestamp"
FIELD_DELIMITER = ":"


@dataclass(frozen=True)
class SignedRequest:
    """Result of signing a request.

    Attributes:
        timestamp: RFC 3339 timestamp that was signed.
        signature: Base64 signature over the canonical string.
        headers: Dict of headers to send with the request.
    """

    timestamp: str
    signature: str
    headers: dict[str, str]


def format_timestamp(moment: datetime) -> str:
    """Render a timezone-aware datetime as RFC 3339 UTC with second precision."""
    if moment.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def encode_form_fields(form_fields: Mapping[str, str]) -> str:
    """Encode form fields as "k=v" pairs joined by "&", keys sorted."""
    return "&".join(f"{key}={form_fields[key]}" for key in sorted(form_fields))


def canonical_request_string(
    method: str,
    path: str,
    timestamp: str,
    form_fields: Mapping[str, str] | None = None,
) -> str:
    """Build the exact string that is signed and verified.

    Example:
        >>> canonical_request_string("post", "/api/v1/upload", "2024-01-01T00:00:00Z")
        'POST:/api/v1/upload:2024-01-01T00:00:00Z'
    """
    parts = [method.upper(), path, timestamp]
    if form_fields:
        parts.append(encode_form_fields(form_fields))
    return FIELD_DELIMITER.join(parts)


def sign_request(
    method: str,
    path: str,
    private_key: rsa.RSAPrivateKey,
    *,
    timestamp: datetime | str | None = None,
    form_fields: Mapping[str, str] | None = None,
) -> SignedRequest:
    """Sign a request and return the authentication headers.

    Args:
        method: HTTP method.
        path: Request path without query string.
        private_key: RSA signing key.
        timestamp: Time to sign; defaults to now. A str is used verbatim.
        form_fields: Form fields to sign (form variant only).
    """
    if timestamp is None:
        timestamp = datetime.now(UTC)
    ts = timestamp if isinstance(timestamp, str) else format_timestamp(timestamp)

    signature = sign(canonical_request_string(method, path, ts, form_fields), private_key)
    return SignedRequest(
        timestamp=ts,
        signature=signature,
        headers={SIGNATURE_HEADER: signature, TIMESTAMP_HEADER: ts},
    )
