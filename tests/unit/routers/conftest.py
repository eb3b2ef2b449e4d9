"""Router test fixtures with a temp database and real lifespan."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from bounty_board_service.app import create_app
from bounty_board_service.config import clear_settings_cache
from bounty_board_service.core.lifespan import lifespan
from bounty_board_service.core.state import get_app_state, reset_app_state
from bounty_board_service.services.envelope_validator import EnvelopeValidator
from tests.helpers import POSTER, signed

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database and log directory."""
    db_path = tmp_path / "test.db"
    log_dir = tmp_path / "logs"
    config_content = f"""\
service:
  name: "bounty-board"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_dir}"
database:
  path: "{db_path}"
auth:
  namespace: "x402-task"
  signature_min_length: 80
  signature_max_length: 100
  timestamp_window_seconds: 300
listing:
  default_limit: 50
  max_limit: 200
  profile_task_limit: 20
request:
  max_body_size: 4096
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class _RejectingVerifier:
    def verify(self, address: str, message: str, signature: str) -> bool:  # noqa: ARG002
        return False


@pytest.fixture
def rejecting_verifier(_app: Any) -> None:
    """Swap in a signature verifier that rejects every envelope."""
    state = get_app_state()
    state.envelope_validator = EnvelopeValidator(
        namespace="x402-task",
        signature_min_length=80,
        signature_max_length=100,
        timestamp_window_seconds=300,
        verifier=_RejectingVerifier(),
    )


# ---------------------------------------------------------------------------
# Task lifecycle helper functions
# ---------------------------------------------------------------------------
async def create_task(
    client: AsyncClient,
    poster: str = POSTER,
    *,
    title: str = "Test task",
    description: str = "Test description for task",
    bounty_sats: int = 10000,
    **extra: Any,
) -> int:
    """Create a task via POST /tasks and return its id."""
    response = await client.post(
        "/tasks",
        json=signed(
            "poster",
            poster,
            title=title,
            description=description,
            bounty_sats=bounty_sats,
            **extra,
        ),
    )
    assert response.status_code == 201, response.text
    return int(response.json()["task_id"])


async def place_bid(
    client: AsyncClient,
    task_id: int,
    bidder: str,
    *,
    amount_sats: int = 5000,
    **extra: Any,
) -> Any:
    """Place a bid via POST /tasks/{task_id}/bids and return the response."""
    return await client.post(
        f"/tasks/{task_id}/bids",
        json=signed("bidder", bidder, amount_sats=amount_sats, **extra),
    )


async def accept_bid(client: AsyncClient, task_id: int, bid_id: int, poster: str = POSTER) -> Any:
    """Accept a bid via POST /tasks/{task_id}/accept."""
    return await client.post(
        f"/tasks/{task_id}/accept",
        json=signed("poster", poster, bid_id=bid_id),
    )


async def submit_work(
    client: AsyncClient,
    task_id: int,
    worker: str,
    proof_url: str = "https://example.com/proof",
) -> Any:
    """Submit work via POST /tasks/{task_id}/submit."""
    return await client.post(
        f"/tasks/{task_id}/submit",
        json=signed("worker", worker, proof_url=proof_url, description="Done"),
    )


async def verify_work(
    client: AsyncClient,
    task_id: int,
    *,
    approved: bool = True,
    poster: str = POSTER,
    **extra: Any,
) -> Any:
    """Verify work via POST /tasks/{task_id}/verify."""
    return await client.post(
        f"/tasks/{task_id}/verify",
        json=signed("poster", poster, approved=approved, **extra),
    )


async def assigned_task(client: AsyncClient, worker: str, *, amount_sats: int = 5000) -> int:
    """Create a task and assign it to ``worker``; returns the task id."""
    task_id = await create_task(client)
    bid = await place_bid(client, task_id, worker, amount_sats=amount_sats)
    assert bid.status_code == 201, bid.text
    accepted = await accept_bid(client, task_id, bid.json()["bid_id"])
    assert accepted.status_code == 200, accepted.text
    return task_id
