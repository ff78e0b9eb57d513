"""Request authorization gate.

Runs the checks for a mutating request in a fixed order and stops at the
first failure:

    START -> HEADER_PRESENT -> TIMESTAMP_PARSED -> TIMESTAMP_FRESH
          -> SIGNATURE_VALID -> AUTHORIZED

Any failed transition ends in REJECTED with a RejectionReason. Replay exposure
is bounded by the freshness window alone; no nonces are tracked. The reason is
for logs and diagnostics only; transports must answer every rejection the
same way.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from ephemstore.auth.canonical import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    canonical_request_string,
)
from ephemstore.auth.errors import (
    AuthenticationError,
    InvalidPublicKeyError,
    InvalidSignatureError,
    MalformedHeaderError,
    TimestampOutOfRangeError,
)
from ephemstore.auth.signature import SignatureAuthenticator
from ephemstore.config import DEFAULT_TIMESTAMP_TOLERANCE

logger = logging.getLogger(__name__)

_RFC3339_TIMESTAMP = re.compile(
    r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})",
    re.ASCII,
)


class AuthState(str, Enum):
    """States of the request authorization state machine."""

    START = "start"
    HEADER_PRESENT = "header_present"
    TIMESTAMP_PARSED = "timestamp_parsed"
    TIMESTAMP_FRESH = "timestamp_fresh"
    SIGNATURE_VALID = "signature_valid"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    """Why a request was rejected."""

    MISSING_SIGNATURE = "missing_signature"
    MISSING_TIMESTAMP = "missing_timestamp"
    MALFORMED_TIMESTAMP = "malformed_timestamp"
    TIMESTAMP_TOO_OLD = "timestamp_too_old"
    TIMESTAMP_IN_FUTURE = "timestamp_in_future"
    INVALID_SIGNATURE = "invalid_signature"
    NO_PUBLIC_KEY = "no_public_key"


_REASON_ERRORS: dict[RejectionReason, type[AuthenticationError]] = {
    RejectionReason.MISSING_SIGNATURE: MalformedHeaderError,
    RejectionReason.MISSING_TIMESTAMP: MalformedHeaderError,
    RejectionReason.MALFORMED_TIMESTAMP: MalformedHeaderError,
    RejectionReason.TIMESTAMP_TOO_OLD: TimestampOutOfRangeError,
    RejectionReason.TIMESTAMP_IN_FUTURE: TimestampOutOfRangeError,
    RejectionReason.INVALID_SIGNATURE: InvalidSignatureError,
    RejectionReason.NO_PUBLIC_KEY: InvalidPublicKeyError,
}


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of running the gate over one request.

    Attributes:
        state: AUTHORIZED or REJECTED.
        last_state: Last state successfully reached before the outcome.
        reason: Rejection reason (None when authorized).
        message: Human-readable detail (internal use only).
        timestamp: Parsed request timestamp, if it got that far.
    """

    state: AuthState
    last_state: AuthState
    reason: RejectionReason | None = None
    message: str | None = None
    timestamp: datetime | None = None

    @property
    def authorized(self) -> bool:
        return self.state is AuthState.AUTHORIZED

    @classmethod
    def ok(cls, timestamp: datetime) -> AuthorizationResult:
        """Create an authorized result."""
        return cls(
            state=AuthState.AUTHORIZED,
            last_state=AuthState.SIGNATURE_VALID,
            timestamp=timestamp,
        )

    @classmethod
    def fail(
        cls,
        last_state: AuthState,
        reason: RejectionReason,
        message: str,
        timestamp: datetime | None = None,
    ) -> AuthorizationResult:
        """Create a rejected result."""
        return cls(
            state=AuthState.REJECTED,
            last_state=last_state,
            reason=reason,
            message=message,
            timestamp=timestamp,
        )

    def raise_for_rejection(self) -> None:
        """Raise the typed AuthenticationError matching the rejection reason."""
        if self.reason is None:
            return
        error_cls = _REASON_ERRORS[self.reason]
        raise error_cls(self.message, reason=self.reason.value)


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup; blank values count as missing."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    if value is None or not value.strip():
        return None
    return value.strip()


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp such as "2024-01-01T12:00:00Z".

    Only the RFC 3339 profile is accepted: uppercase "T" separator, seconds
    present, optional fraction, and "Z" or a "+hh:mm" offset. Other ISO 8601
    spellings (basic format, space separator, missing offset) are rejected.

    Raises:
        ValueError: If the value is not an RFC 3339 timestamp.
    """
    match = _RFC3339_TIMESTAMP.fullmatch(value)
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")

    moment, fraction, offset = match.groups()
    if fraction:
        moment = f"{moment}.{fraction[:6].ljust(6, '0')}"
    return datetime.fromisoformat(moment + ("+00:00" if offset == "Z" else offset))


class RequestAuthorizationGate:
    """Authorizes signed requests using a SignatureAuthenticator.

    Args:
        authenticator: Verifies the signature over the canonical string.
        tolerance: Maximum accepted distance between the request timestamp
            and now, in either direction.
        clock: Returns the current timezone-aware time. Defaults to UTC now.
        sign_form_fields: Include form fields in the canonical string.
    """

    def __init__(
        self,
        authenticator: SignatureAuthenticator,
        *,
        tolerance: timedelta = DEFAULT_TIMESTAMP_TOLERANCE,
        clock: Callable[[], datetime] | None = None,
        sign_form_fields: bool = False,
    ) -> None:
        if tolerance.total_seconds() < 0:
            raise ValueError("tolerance must not be negative")
        self._authenticator = authenticator
        self._tolerance = tolerance.total_seconds()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sign_form_fields = sign_form_fields

    @property
    def authenticator(self) -> SignatureAuthenticator:
        return self._authenticator

    @property
    def sign_form_fields(self) -> bool:
        return self._sign_form_fields

    def evaluate(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        form_fields: Mapping[str, str] | None = None,
    ) -> AuthorizationResult:
        """Run the state machine and return the outcome without raising."""
        result = self._evaluate(method, path, headers, form_fields)
        if not result.authorized:
            logger.info(
                "Request rejected: method=%s path=%s reason=%s state=%s",
                method,
                path,
                result.reason.value if result.reason else None,
                result.last_state.value,
            )
        return result

    def authorize(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        form_fields: Mapping[str, str] | None = None,
    ) -> AuthorizationResult:
        """Run the state machine and raise on rejection.

        Raises:
            MalformedHeaderError: Missing header or unparsable timestamp.
            TimestampOutOfRangeError: Timestamp outside the freshness window.
            InvalidSignatureError: Signature malformed or not valid.
            InvalidPublicKeyError: No public key loaded.
        """
        result = self.evaluate(method, path, headers, form_fields)
        result.raise_for_rejection()
        return result

    def _evaluate(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        form_fields: Mapping[str, str] | None,
    ) -> AuthorizationResult:
        state = AuthState.START

        signature = get_header(headers, SIGNATURE_HEADER)
        if signature is None:
            return AuthorizationResult.fail(
                state, RejectionReason.MISSING_SIGNATURE, "signature header is required"
            )
        raw_timestamp = get_header(headers, TIMESTAMP_HEADER)
        if raw_timestamp is None:
            return AuthorizationResult.fail(
                state, RejectionReason.MISSING_TIMESTAMP, "timestamp header is required"
            )
        state = AuthState.HEADER_PRESENT

        try:
            timestamp = parse_timestamp(raw_timestamp)
        except ValueError:
            return AuthorizationResult.fail(
                state, RejectionReason.MALFORMED_TIMESTAMP, "invalid timestamp format"
            )
        state = AuthState.TIMESTAMP_PARSED

        skew = (self._clock() - timestamp).total_seconds()
        if skew > self._tolerance:
            return AuthorizationResult.fail(
                state, RejectionReason.TIMESTAMP_TOO_OLD, "timestamp is too old", timestamp
            )
        if skew < -self._tolerance:
            return AuthorizationResult.fail(
                state,
                RejectionReason.TIMESTAMP_IN_FUTURE,
                "timestamp is in the future",
                timestamp,
            )
        state = AuthState.TIMESTAMP_FRESH

        signed_fields = form_fields if self._sign_form_fields else None
        canonical = canonical_request_string(method, path, raw_timestamp, signed_fields)
        try:
            self._authenticator.verify(canonical, signature)
        except InvalidPublicKeyError:
            return AuthorizationResult.fail(
                state, RejectionReason.NO_PUBLIC_KEY, "no public key loaded", timestamp
            )
        except InvalidSignatureError:
            return AuthorizationResult.fail(
                state, RejectionReason.INVALID_SIGNATURE, "invalid signature", timestamp
            )

        return AuthorizationResult.ok(timestamp)
