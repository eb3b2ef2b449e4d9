"""Unit tests for signed-request envelope validation."""

from __future__ import annotations

import pytest
from freezegun import freeze_time

from bounty_board_service.core.exceptions import ServiceError
from bounty_board_service.services.envelope_validator import (
    EnvelopeValidator,
    parse_timestamp,
)
from tests.helpers import POSTER, make_signature

FROZEN_NOW = "2026-03-01T12:00:00Z"


class _RecordingVerifier:
    def __init__(self, result: bool) -> None:
        self.result = result
        self.calls: list[tuple[str, str, str]] = []

    def verify(self, address: str, message: str, signature: str) -> bool:
        self.calls.append((address, message, signature))
        return self.result


def _validator(verifier=None) -> EnvelopeValidator:
    return EnvelopeValidator(
        namespace="x402-task",
        signature_min_length=80,
        signature_max_length=100,
        timestamp_window_seconds=300,
        verifier=verifier,
    )


def _body(**overrides):
    body = {
        "poster": POSTER,
        "signature": make_signature(POSTER),
        "timestamp": "2026-03-01T11:58:00Z",
    }
    body.update(overrides)
    return body


@pytest.mark.unit
@freeze_time(FROZEN_NOW)
def test_valid_envelope_builds_signed_message() -> None:
    envelope = _validator().validate(_body(), "create_task", "poster")
    assert envelope.address == POSTER
    assert envelope.signed_message == f"x402-task | create_task | {POSTER} | 2026-03-01T11:58:00Z"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"poster": None}, "UNAUTHORIZED"),
        ({"signature": ""}, "UNAUTHORIZED"),
        ({"timestamp": None}, "UNAUTHORIZED"),
        ({"signature": "x" * 79}, "INVALID_SIGNATURE"),
        ({"signature": "x" * 101}, "INVALID_SIGNATURE"),
        ({"signature": 12345}, "INVALID_SIGNATURE"),
        ({"timestamp": "yesterday"}, "INVALID_TIMESTAMP"),
        ({"timestamp": "2026-03-01T11:54:59Z"}, "TIMESTAMP_EXPIRED"),
        ({"timestamp": "2026-03-01T12:05:01Z"}, "TIMESTAMP_EXPIRED"),
    ],
)
@freeze_time(FROZEN_NOW)
def test_envelope_failures_are_unauthorized(overrides, code) -> None:
    with pytest.raises(ServiceError) as exc_info:
        _validator().validate(_body(**overrides), "create_task", "poster")
    assert exc_info.value.error == code
    assert exc_info.value.status_code == 401


@pytest.mark.unit
@freeze_time(FROZEN_NOW)
def test_window_boundaries_are_inclusive() -> None:
    validator = _validator()
    validator.validate(_body(timestamp="2026-03-01T11:55:00Z"), "cancel", "poster")
    validator.validate(_body(timestamp="2026-03-01T12:05:00+00:00"), "cancel", "poster")


@pytest.mark.unit
@freeze_time(FROZEN_NOW)
def test_pluggable_verifier_is_consulted() -> None:
    accepting = _RecordingVerifier(result=True)
    _validator(accepting).validate(_body(), "verify", "poster")
    assert accepting.calls[0][1] == f"x402-task | verify | {POSTER} | 2026-03-01T11:58:00Z"

    rejecting = _RecordingVerifier(result=False)
    with pytest.raises(ServiceError) as exc_info:
        _validator(rejecting).validate(_body(), "verify", "poster")
    assert exc_info.value.error == "INVALID_SIGNATURE"


@pytest.mark.unit
def test_unknown_action_is_programming_error() -> None:
    with pytest.raises(ValueError, match="Unknown envelope action"):
        _validator().validate(_body(), "delete_everything", "poster")


@pytest.mark.unit
def test_parse_timestamp_treats_naive_as_utc() -> None:
    parsed = parse_timestamp("2026-03-01T12:00:00")
    assert parsed is not None
    assert parsed.utcoffset() is not None
    assert parse_timestamp("not-a-date") is None
