"""HTTP tests for the request validation middleware."""

from __future__ import annotations

import pytest

from tests.helpers import POSTER, signed


@pytest.mark.unit
async def test_wrong_content_type_is_415(client):
    response = await client.post(
        "/tasks", content=b"poster=x", headers={"content-type": "text/plain"}
    )
    assert response.status_code == 415
    assert response.json()["error"] == "UNSUPPORTED_MEDIA_TYPE"


@pytest.mark.unit
async def test_patch_cancel_also_checked(client):
    response = await client.patch("/tasks/1/cancel", content=b"{}")
    assert response.status_code == 415


@pytest.mark.unit
async def test_oversized_body_is_413(client):
    body = signed("poster", POSTER, title="t", description="x" * 5000, bounty_sats=10)
    response = await client.post("/tasks", json=body)
    assert response.status_code == 413
    assert response.json()["error"] == "PAYLOAD_TOO_LARGE"


@pytest.mark.unit
async def test_get_requests_pass_through(client):
    response = await client.get("/tasks", headers={"content-type": "text/plain"})
    assert response.status_code == 200
