"""Authentication error types.

Each error carries the precise rejection reason for diagnostics. Transports
must not echo it back to clients: every rejection is reported as a uniform
"unauthorized" so a caller cannot tell which check failed.
"""

from __future__ import annotations


class AuthenticationError(Exception):
    """Base exception for signature authentication failures.

    Attributes:
        message: Human-readable error message (internal use only).
        reason: Machine-readable rejection reason, if known.
    """

    default_message = "Authentication failed"

    def __init__(self, message: str | None = None, *, reason: str | None = None) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        self.reason = reason

    def __str__(self) -> str:
        if self.reason:
            return f"{self.message} reason={self.reason}"
        return self.message


class InvalidSignatureError(AuthenticationError):
    """Raised when a signature does not verify against the loaded key."""

    default_message = "Invalid signature"


class MalformedSignatureError(InvalidSignatureError):
    """Raised when a signature is not valid standard base64."""

    default_message = "Malformed signature encoding"


class InvalidPublicKeyError(AuthenticationError):
    """Raised when key material is missing, unparsable or of an unsupported algorithm."""

    default_message = "Invalid public key"


class KeyMaterialIOError(AuthenticationError):
    """Raised when a key file cannot be read."""

    default_message = "Failed to read key material"


class TimestampOutOfRangeError(AuthenticationError):
    """Raised when a request timestamp falls outside the freshness window."""

    default_message = "Timestamp is too old or in the future"


class MalformedHeaderError(AuthenticationError):
    """Raised when a required header is missing or has the wrong shape."""

    default_message = "Required authentication header is missing or malformed"


class InvalidPrivateKeyError(AuthenticationError):
    """Raised when signing key material is unparsable or not an RSA private key."""

    default_message = "Invalid private key"
