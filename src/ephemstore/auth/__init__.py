"""Signature-based request authentication.

Mutating requests carry an RSA PKCS#1 v1.5 / SHA-256 signature over a
canonical "{METHOD}:{path}:{timestamp}" string plus the timestamp itself.
The gate rejects stale or future timestamps before verifying the signature.
"""

from ephemstore.auth.canonical import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    SignedRequest,
    canonical_request_string,
    sign_request,
)
from ephemstore.auth.errors import (
    AuthenticationError,
    InvalidPrivateKeyError,
    InvalidPublicKeyError,
    InvalidSignatureError,
    KeyMaterialIOError,
    MalformedHeaderError,
    MalformedSignatureError,
    TimestampOutOfRangeError,
)
from ephemstore.auth.gate import (
    AuthorizationResult,
    AuthState,
    RejectionReason,
    RequestAuthorizationGate,
)
from ephemstore.auth.keys import KeyAlgorithm, load_private_key, load_public_key
from ephemstore.auth.signature import SignatureAuthenticator, sign, sign_with_key_file

__all__ = [
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "AuthState",
    "AuthenticationError",
    "AuthorizationResult",
    "InvalidPrivateKeyError",
    "InvalidPublicKeyError",
    "InvalidSignatureError",
    "KeyAlgorithm",
    "KeyMaterialIOError",
    "MalformedHeaderError",
    "MalformedSignatureError",
    "RejectionReason",
    "RequestAuthorizationGate",
    "SignatureAuthenticator",
    "SignedRequest",
    "TimestampOutOfRangeError",
    "canonical_request_string",
    "load_private_key",
    "load_public_key",
    "sign",
    "sign_request",
    "sign_with_key_file",
]
