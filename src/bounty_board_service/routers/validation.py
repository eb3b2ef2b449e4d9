"""Shared request validation helpers for bounty-board routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from bounty_board_service.core.exceptions import ServiceError
from bounty_board_service.core.state import get_app_state
from bounty_board_service.services.task_store import MAX_SQLITE_INT

if TYPE_CHECKING:
    from bounty_board_service.services.envelope_validator import AuthEnvelope
    from bounty_board_service.services.task_board import TaskBoard


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def require_fields(data: dict[str, Any], *field_names: str) -> None:
    """Reject the request when any named field is absent, null or empty."""
    missing = [name for name in field_names if data.get(name) is None or data.get(name) == ""]
    if missing:
        raise ServiceError(
            "MISSING_FIELD",
            f"Required: {', '.join(field_names)}",
            400,
            {"missing": missing},
        )


def _parse_positive_id(raw: str) -> int | None:
    if not (raw.isascii() and raw.isdigit()) or len(raw) > len(str(MAX_SQLITE_INT)):
        return None
    value = int(raw)
    if not 0 < value <= MAX_SQLITE_INT:
        return None
    return value


def parse_task_id(raw: str) -> int:
    """Task ids are positive integers; anything else cannot name a task."""
    task_id = _parse_positive_id(raw)
    if task_id is None:
        raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
    return task_id


def parse_bid_id(raw: str) -> int:
    """Bid ids are positive integers; anything else cannot name a bid."""
    bid_id = _parse_positive_id(raw)
    if bid_id is None:
        raise ServiceError("BID_NOT_FOUND", "Bid not found", 404, {})
    return bid_id


def parse_query_int(raw: str | None, name: str) -> int | None:
    """Parse an optional integer query parameter."""
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be an integer", 400, {}) from exc


def authenticate(data: dict[str, Any], action: str, address_field: str) -> AuthEnvelope:
    """Validate the signed envelope in a write request body."""
    state = get_app_state()
    if state.envelope_validator is None:
        msg = "EnvelopeValidator not initialized"
        raise RuntimeError(msg)
    return state.envelope_validator.validate(data, action, address_field)


def get_task_board() -> TaskBoard:
    """Return the initialized TaskBoard."""
    state = get_app_state()
    if state.task_board is None:
        msg = "TaskBoard not initialized"
        raise RuntimeError(msg)
    return state.task_board
