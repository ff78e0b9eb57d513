"""Pytest configuration and fixtures for ephemstore tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from ephemstore.auth.keys import generate_keypair
from ephemstore.storage.tracing import EPHEMSTORE_OTEL_ENABLED_ENV
from ephemstore.testing import FixedClock


@pytest.fixture(autouse=True)
def disable_tracing(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep OpenTelemetry spans off unless a test turns them on."""
    monkeypatch.delenv(EPHEMSTORE_OTEL_ENABLED_ENV, raising=False)


@pytest.fixture
def temp_storage_dir() -> Iterator[Path]:
    """Create a temporary directory for storage tests."""
    with tempfile.TemporaryDirectory(prefix="ephemstore_test_storage_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FixedClock:
    """Return a clock frozen at START_TIME."""
    return FixedClock()


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    """RSA signing key shared by the whole session (generation is slow)."""
    return generate_keypair(2048)


@pytest.fixture(scope="session")
def other_private_key() -> rsa.RSAPrivateKey:
    """A second, unrelated RSA key."""
    return generate_keypair(2048)
