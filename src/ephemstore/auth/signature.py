"""RSA signature verification with hot-reloadable public key.

Scheme: RSASSA-PKCS1-v1_5 over a SHA-256 digest, signatures transported as
standard base64. sign() and SignatureAuthenticator.verify() are the two ends
of the same protocol and must stay bit-compatible.

SECURITY: Never log signatures, signed strings or key material.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ephemstore.auth.errors import (
    AuthenticationError,
    InvalidPublicKeyError,
    InvalidSignatureError,
    MalformedSignatureError,
)
from ephemstore.auth.keys import KeySource, load_private_key, load_public_key
from ephemstore.auth.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


def _to_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def decode_signature(signature: str) -> bytes:
    """Decode a standard base64 signature.

    Raises:
        MalformedSignatureError: If the value is empty or not valid base64.
    """
    if not signature:
        raise MalformedSignatureError("Empty signature", reason="empty_signature")
    try:
        return base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedSignatureError(reason="bad_base64") from e


def sign(data: bytes | str, private_key: rsa.RSAPrivateKey) -> str:
    """Sign data with PKCS#1 v1.5 / SHA-256 and return base64.

    Args:
        data: Bytes to sign; str is encoded as UTF-8.
        private_key: RSA private key.

    Returns:
        Standard base64 encoding of the signature.
    """
    signature = private_key.sign(_to_bytes(data), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def sign_with_key_file(data: bytes | str, private_key_path: str | Path) -> str:
    """Sign data with the RSA private key stored at private_key_path."""
    return sign(data, load_private_key(Path(private_key_path)))


class SignatureAuthenticator:
    """Verifies base64 RSA signatures against a swappable public key.

    Any number of verify() calls may run concurrently. reload_public_key()
    parses the new key first and then swaps it in under the exclusive side of
    a read-write lock, so a verify sees either the old key or the new one.
    """

    def __init__(self, public_key: rsa.RSAPublicKey | None = None) -> None:
        self._public_key = public_key
        self._lock = ReadWriteLock()

    @classmethod
    def from_file(cls, public_key_path: str | Path) -> SignatureAuthenticator:
        """Create an authenticator from a PEM public key file.

        Raises:
            KeyMaterialIOError: If the file cannot be read.
            InvalidPublicKeyError: If the key cannot be parsed or is not RSA.
        """
        return cls(load_public_key(Path(public_key_path)))

    @classmethod
    def from_pem(cls, pem_data: bytes) -> SignatureAuthenticator:
        """Create an authenticator from PEM public key bytes."""
        return cls(load_public_key(pem_data))

    @property
    def has_key(self) -> bool:
        """Return True if a public key is loaded."""
        with self._lock.read_locked():
            return self._public_key is not None

    def verify(self, data: bytes | str, signature: str) -> bool:
        """Verify a base64 signature over data.

        Returns:
            True when the signature is cryptographically valid.

        Raises:
            InvalidPublicKeyError: If no public key is loaded.
            MalformedSignatureError: If the signature is not valid base64.
            InvalidSignatureError: If the signature does not match.
        """
        with self._lock.read_locked():
            public_key = self._public_key
            if public_key is None:
                raise InvalidPublicKeyError("No public key loaded", reason="no_public_key")

            sig_bytes = decode_signature(signature)
            try:
                public_key.verify(sig_bytes, _to_bytes(data), padding.PKCS1v15(), hashes.SHA256())
            except InvalidSignature as e:
                raise InvalidSignatureError(reason="mismatch") from e

        return True

    def is_valid(self, data: bytes | str, signature: str) -> bool:
        """Return True if verify() succeeds, False on any authentication error."""
        try:
            return self.verify(data, signature)
        except AuthenticationError:
            return False

    def reload_public_key(self, source: KeySource) -> None:
        """Replace the public key from a PEM file path or PEM data.

        The current key stays active if loading fails.

        Raises:
            KeyMaterialIOError: If a key file cannot be read.
            InvalidPublicKeyError: If the key cannot be parsed or is not RSA.
        """
        public_key = load_public_key(source)

        with self._lock.write_locked():
            self._public_key = public_key

        logger.info("Public key reloaded (%d-bit RSA)", public_key.key_size)
