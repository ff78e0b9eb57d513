"""RSA key material loading, generation and serialization.

Public keys are accepted as PEM SubjectPublicKeyInfo or PKCS#1; private keys
as PEM PKCS#1 or PKCS#8 (unencrypted). Parsed keys are classified into a
KeyAlgorithm and only RSA is accepted; every other algorithm is rejected
explicitly.
"""

from __future__ import annotations

import functools
import logging
import os
from enum import Enum
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa, x448, x25519

from ephemstore.auth.errors import (
    InvalidPrivateKeyError,
    InvalidPublicKeyError,
    KeyMaterialIOError,
)

logger = logging.getLogger(__name__)

PEM_MARKER = b"-----BEGIN"
DEFAULT_KEY_SIZE = 2048

KeySource = str | Path | bytes


class KeyAlgorithm(str, Enum):
    """Algorithm family of a parsed key."""

    RSA = "rsa"
    EC = "ec"
    ED25519 = "ed25519"
    ED448 = "ed448"
    DSA = "dsa"
    X25519 = "x25519"
    X448 = "x448"
    UNKNOWN = "unknown"


_ALGORITHM_TYPES: tuple[tuple[tuple[type, ...], KeyAlgorithm], ...] = (
    ((rsa.RSAPublicKey, rsa.RSAPrivateKey), KeyAlgorithm.RSA),
    ((ec.EllipticCurvePublicKey, ec.EllipticCurvePrivateKey), KeyAlgorithm.EC),
    ((ed25519.Ed25519PublicKey, ed25519.Ed25519PrivateKey), KeyAlgorithm.ED25519),
    ((ed448.Ed448PublicKey, ed448.Ed448PrivateKey), KeyAlgorithm.ED448),
    ((dsa.DSAPublicKey, dsa.DSAPrivateKey), KeyAlgorithm.DSA),
    ((x25519.X25519PublicKey, x25519.X25519PrivateKey), KeyAlgorithm.X25519),
    ((x448.X448PublicKey, x448.X448PrivateKey), KeyAlgorithm.X448),
)


def classify_key(key: object) -> KeyAlgorithm:
    """Return the algorithm family of a cryptography key object."""
    for types, algorithm in _ALGORITHM_TYPES:
        if isinstance(key, types):
            return algorithm
    return KeyAlgorithm.UNKNOWN


def _read_source(source: KeySource) -> bytes:
    """Return PEM bytes from raw PEM (bytes or str) or a file path."""
    if isinstance(source, bytes):
        return source
    if isinstance(source, str) and source.lstrip().startswith(PEM_MARKER.decode()):
        return source.encode("utf-8")

    path = Path(source)
    try:
        return path.read_bytes()
    except OSError as e:
        raise KeyMaterialIOError(f"Failed to read key file {path.name}: {e}") from e


@functools.lru_cache(maxsize=32)
def parse_public_key(pem_data: bytes) -> rsa.RSAPublicKey:
    """Parse PEM public key bytes into an RSA public key.

    Raises:
        InvalidPublicKeyError: If the data is not a PEM public key or the
            key is not RSA.
    """
    if PEM_MARKER not in pem_data:
        raise InvalidPublicKeyError("No PEM block found", reason="not_pem")

    try:
        key = serialization.load_pem_public_key(pem_data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidPublicKeyError(f"Failed to parse public key: {e}", reason="unparsable") from e

    algorithm = classify_key(key)
    if algorithm is KeyAlgorithm.RSA:
        assert isinstance(key, rsa.RSAPublicKey)
        return key

    raise InvalidPublicKeyError(
        f"Unsupported public key algorithm: {algorithm.value}",
        reason="unsupported_algorithm",
    )


def load_public_key(source: KeySource) -> rsa.RSAPublicKey:
    """Load an RSA public key from a PEM file path or PEM data.

    Raises:
        KeyMaterialIOError: If a key file cannot be read.
        InvalidPublicKeyError: If the key cannot be parsed or is not RSA.
    """
    return parse_public_key(_read_source(source))


def load_private_key(source: KeySource) -> rsa.RSAPrivateKey:
    """Load an unencrypted RSA private key (PKCS#1 or PKCS#8 PEM).

    Raises:
        KeyMaterialIOError: If a key file cannot be read.
        InvalidPrivateKeyError: If the key cannot be parsed or is not RSA.
    """
    pem_data = _read_source(source)
    try:
        key = serialization.load_pem_private_key(pem_data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidPrivateKeyError(f"Failed to parse private key: {e}") from e

    algorithm = classify_key(key)
    if algorithm is KeyAlgorithm.RSA:
        assert isinstance(key, rsa.RSAPrivateKey)
        return key

    raise InvalidPrivateKeyError(
        f"Unsupported private key algorithm: {algorithm.value}",
        reason="unsupported_algorithm",
    )


def generate_keypair(key_size: int = DEFAULT_KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate a new RSA private key (public exponent 65537)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def private_key_to_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    """Serialize a private key as unencrypted PKCS#8 PEM.

    WARNING: The result is secret key material.
    """
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_key_to_pem(public_key: rsa.RSAPublicKey) -> bytes:
    """Serialize a public key as SubjectPublicKeyInfo PEM."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def save_keypair(
    private_key: rsa.RSAPrivateKey,
    directory: str | Path,
    name: str = "signing",
) -> tuple[Path, Path]:
    """Write {name}_private.pem (mode 0600) and {name}_public.pem.

    Returns:
        Tuple of (private_key_path, public_key_path).
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    private_path = directory / f"{name}_private.pem"
    public_path = directory / f"{name}_public.pem"

    private_path.write_bytes(private_key_to_pem(private_key))
    os.chmod(private_path, 0o600)
    public_path.write_bytes(public_key_to_pem(private_key.public_key()))

    logger.info("Wrote keypair %s to %s", name, directory)
    return private_path, public_path
