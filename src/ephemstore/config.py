"""Environment-driven configuration for ephemstore.

Environment Variables:
    EPHEMSTORE_STORAGE_DIR: Root directory for metadata and blobs (default: ./storage)
    EPHEMSTORE_DEFAULT_TTL: Default object lifetime, e.g. "1h", "90m" (default: 1h)
    EPHEMSTORE_SWEEP_INTERVAL: Reclamation sweep interval (default: 5m)
    EPHEMSTORE_PUBLIC_KEY_PATH: PEM public key used to verify signed requests
    EPHEMSTORE_TIMESTAMP_TOLERANCE: Accepted clock skew in seconds (default: 300)
    EPHEMSTORE_SIGN_FORM_FIELDS: "1" to include form fields in the signed string
    EPHEMSTORE_LOG_LEVEL: Logging level for the server (default: INFO)
    EPHEMSTORE_HOST: Bind address for `ephemstore serve` (default: 0.0.0.0)
    EPHEMSTORE_PORT: Bind port for `ephemstore serve` (default: 8080)
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import timedelta

logger = logging.getLogger(__name__)

EPHEMSTORE_STORAGE_DIR_ENV = "EPHEMSTORE_STORAGE_DIR"
EPHEMSTORE_DEFAULT_TTL_ENV = "EPHEMSTORE_DEFAULT_TTL"
EPHEMSTORE_SWEEP_INTERVAL_ENV = "EPHEMSTORE_SWEEP_INTERVAL"
EPHEMSTORE_PUBLIC_KEY_PATH_ENV = "EPHEMSTORE_PUBLIC_KEY_PATH"
EPHEMSTORE_TIMESTAMP_TOLERANCE_ENV = "EPHEMSTORE_TIMESTAMP_TOLERANCE"
EPHEMSTORE_SIGN_FORM_FIELDS_ENV = "EPHEMSTORE_SIGN_FORM_FIELDS"
EPHEMSTORE_LOG_LEVEL_ENV = "EPHEMSTORE_LOG_LEVEL"
EPHEMSTORE_HOST_ENV = "EPHEMSTORE_HOST"
EPHEMSTORE_PORT_ENV = "EPHEMSTORE_PORT"

DEFAULT_STORAGE_DIR = "./storage"
DEFAULT_TTL = timedelta(hours=1)
DEFAULT_SWEEP_INTERVAL = timedelta(minutes=5)
DEFAULT_TIMESTAMP_TOLERANCE = timedelta(seconds=300)

_BARE_SECONDS = re.compile(r"^\d+(?:\.\d+)?$")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|us|ns|h|m|s)")
_UNIT_SECONDS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "ns": 1e-9,
}


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def get_env_str(key: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.environ.get(key, default).strip()


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as "90", "45s", "15m" or "1h30m".

    A bare number is taken as seconds. Compound values are summed.

    Raises:
        ValueError: If the value is empty, not a recognised duration, or
            too large for a timedelta.
    """
    text = value.strip().lower()
    if not text:
        raise ValueError("empty duration")

    if _BARE_SECONDS.match(text):
        total = float(text)
    else:
        pos = 0
        total = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                break
            total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
            pos = match.end()

        if pos == 0 or pos != len(text):
            raise ValueError(f"invalid duration: {value!r}")

    try:
        return timedelta(seconds=total)
    except OverflowError as e:
        raise ValueError(f"duration out of range: {value!r}") from e


def _get_env_duration(key: str, default: timedelta) -> timedelta:
    """Get a duration from environment, falling back to default if unparsable."""
    raw = get_env_str(key)
    if not raw:
        return default
    try:
        return parse_duration(raw)
    except ValueError:
        logger.warning("Invalid duration in %s=%r; using default %s", key, raw, default)
        return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer from environment, falling back to default if unparsable."""
    raw = get_env_str(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in %s=%r; using default %d", key, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the store, the gate and the HTTP service."""

    storage_dir: str = DEFAULT_STORAGE_DIR
    default_ttl: timedelta = DEFAULT_TTL
    sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL
    public_key_path: str | None = None
    timestamp_tolerance: timedelta = DEFAULT_TIMESTAMP_TOLERANCE
    sign_form_fields: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from EPHEMSTORE_* environment variables."""
        tolerance_seconds = _get_env_int(
            EPHEMSTORE_TIMESTAMP_TOLERANCE_ENV,
            int(DEFAULT_TIMESTAMP_TOLERANCE.total_seconds()),
        )
        return cls(
            storage_dir=get_env_str(EPHEMSTORE_STORAGE_DIR_ENV, DEFAULT_STORAGE_DIR)
            or DEFAULT_STORAGE_DIR,
            default_ttl=_get_env_duration(EPHEMSTORE_DEFAULT_TTL_ENV, DEFAULT_TTL),
            sweep_interval=_get_env_duration(
                EPHEMSTORE_SWEEP_INTERVAL_ENV, DEFAULT_SWEEP_INTERVAL
            ),
            public_key_path=get_env_str(EPHEMSTORE_PUBLIC_KEY_PATH_ENV) or None,
            timestamp_tolerance=timedelta(seconds=tolerance_seconds),
            sign_form_fields=get_env_bool(EPHEMSTORE_SIGN_FORM_FIELDS_ENV, False),
            log_level=get_env_str(EPHEMSTORE_LOG_LEVEL_ENV, "INFO").upper() or "INFO",
            host=get_env_str(EPHEMSTORE_HOST_ENV, "0.0.0.0") or "0.0.0.0",
            port=_get_env_int(EPHEMSTORE_PORT_ENV, 8080),
        )
