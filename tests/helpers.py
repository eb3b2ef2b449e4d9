"""Shared test helpers for signed-request envelopes."""

from __future__ import annotations

import base64
import hashlib
from datetime import UTC, datetime, timedelta
from typing import Any

POSTER = "bc1qposter0000000000000000000000000000000"
WORKER_A = "bc1qworkera000000000000000000000000000000"
WORKER_B = "bc1qworkerb000000000000000000000000000000"
WORKER_C = "bc1qworkerc000000000000000000000000000000"
STRANGER = "bc1qstranger00000000000000000000000000000"


def make_signature(address: str, length: int = 88) -> str:
    """Build a base64 string of the given length, shaped like a BIP-137 signature."""
    digest = hashlib.sha512(address.encode()).digest() * 2
    return base64.b64encode(digest).decode()[:length]


def iso_timestamp(offset_seconds: int = 0) -> str:
    """Current UTC time (shifted by offset) as ISO 8601 with Z suffix."""
    moment = datetime.now(UTC) + timedelta(seconds=offset_seconds)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def signed(address_field: str, address: str, **fields: Any) -> dict[str, Any]:
    """Return a request body carrying a fresh, well-formed envelope."""
    body: dict[str, Any] = {
        address_field: address,
        "signature": make_signature(address),
        "timestamp": iso_timestamp(),
    }
    body.update(fields)
    return body
