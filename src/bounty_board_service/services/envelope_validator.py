"""Signed-request envelope validation for write operations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from bounty_board_service.core.exceptions import ServiceError
from bounty_board_service.logging import get_logger

ACTIONS: frozenset[str] = frozenset(
    {"create_task", "bid", "withdraw_bid", "accept_bid", "submit", "verify", "cancel"}
)


class SignatureVerifier(Protocol):
    """Checks a signature over the envelope's signed message."""

    def verify(self, address: str, message: str, signature: str) -> bool: ...


class ShapeOnlyVerifier:
    """Accepts every well-formed signature; cryptographic checks are left to a real verifier."""

    def verify(self, address: str, message: str, signature: str) -> bool:  # noqa: ARG002
        return True


@dataclass(frozen=True)
class AuthEnvelope:
    """A validated actor envelope."""

    address: str
    signature: str
    timestamp: str
    signed_message: str


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class EnvelopeValidator:
    """
    Validates the authentication envelope carried in write request bodies.

    Checks, in order: actor address present, signature and timestamp present,
    signature length, timestamp parseable, timestamp within the freshness
    window (either direction), and finally the pluggable signature verifier.
    """

    def __init__(
        self,
        namespace: str,
        signature_min_length: int,
        signature_max_length: int,
        timestamp_window_seconds: int,
        verifier: SignatureVerifier | None = None,
    ) -> None:
        self._namespace = namespace
        self._signature_min_length = signature_min_length
        self._signature_max_length = signature_max_length
        self._timestamp_window_seconds = timestamp_window_seconds
        self._verifier: SignatureVerifier = verifier or ShapeOnlyVerifier()
        self._logger = get_logger(__name__)

    def signed_message(self, action: str, address: str, timestamp: str) -> str:
        """Build the canonical message an actor signs."""
        return f"{self._namespace} | {action} | {address} | {timestamp}"

    def validate(self, data: dict[str, Any], action: str, address_field: str) -> AuthEnvelope:
        """
        Validate the envelope in ``data`` for ``action``.

        Raises:
            ServiceError: UNAUTHORIZED, INVALID_SIGNATURE, INVALID_TIMESTAMP,
                          TIMESTAMP_EXPIRED (all 401)
        """
        if action not in ACTIONS:
            msg = f"Unknown envelope action: {action}"
            raise ValueError(msg)

        address = data.get(address_field)
        if not isinstance(address, str) or not address:
            raise ServiceError("UNAUTHORIZED", f"Required: {address_field}", 401, {})

        signature = data.get("signature")
        if signature is None or signature == "":
            raise ServiceError("UNAUTHORIZED", "Required: signature", 401, {})

        timestamp = data.get("timestamp")
        if timestamp is None or timestamp == "":
            raise ServiceError("UNAUTHORIZED", "Required: timestamp (ISO 8601)", 401, {})

        if (
            not isinstance(signature, str)
            or len(signature) < self._signature_min_length
            or len(signature) > self._signature_max_length
        ):
            raise ServiceError(
                "INVALID_SIGNATURE",
                "Invalid signature format",
                401,
                {
                    "min_length": self._signature_min_length,
                    "max_length": self._signature_max_length,
                },
            )

        if not isinstance(timestamp, str):
            raise ServiceError("INVALID_TIMESTAMP", "Invalid timestamp format", 401, {})
        parsed = parse_timestamp(timestamp)
        if parsed is None:
            raise ServiceError("INVALID_TIMESTAMP", "Invalid timestamp format", 401, {})

        drift = abs((datetime.now(UTC) - parsed).total_seconds())
        if drift > self._timestamp_window_seconds:
            raise ServiceError(
                "TIMESTAMP_EXPIRED",
                f"Timestamp too old or in future (must be within "
                f"{self._timestamp_window_seconds} seconds)",
                401,
                {"window_seconds": self._timestamp_window_seconds},
            )

        message = self.signed_message(action, address, timestamp)
        if not self._verifier.verify(address, message, signature):
            self._logger.warning(
                "Signature rejected", extra={"address": address, "action": action}
            )
            raise ServiceError("INVALID_SIGNATURE", "Signature verification failed", 401, {})

        return AuthEnvelope(
            address=address,
            signature=signature,
            timestamp=timestamp,
            signed_message=message,
        )
