"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from bounty_board_service.core.exceptions import ServiceError
from bounty_board_service.routers.validation import (
    authenticate,
    get_task_board,
    parse_json_body,
    parse_query_int,
    parse_task_id,
    require_fields,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a new task with a bounty."""
    data = parse_json_body(await request.body())
    require_fields(data, "poster", "title", "description", "bounty_sats")
    envelope = authenticate(data, "create_task", "poster")

    board = get_task_board()
    result = await run_in_threadpool(
        board.create_task,
        envelope.address,
        data.get("title"),
        data.get("description"),
        data.get("bounty_sats"),
        tags=data.get("tags"),
        deadline=data.get("deadline"),
        poster_name=data.get("poster_name"),
        poster_secondary=data.get("poster_stx"),
        signature=envelope.signature,
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional status, poster and tag filters."""
    params = request.query_params
    limit = parse_query_int(params.get("limit"), "limit")
    offset = parse_query_int(params.get("offset"), "offset")

    board = get_task_board()
    return await run_in_threadpool(
        board.list_tasks,
        status=params.get("status") or None,
        poster=params.get("poster") or None,
        tag=params.get("tag") or None,
        limit=limit,
        offset=offset if offset is not None else 0,
    )


# ---------------------------------------------------------------------------
# Accept endpoint
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/accept")
async def accept_bid(task_id: str, request: Request) -> JSONResponse:
    """Accept a pending bid and assign its bidder as worker."""
    data = parse_json_body(await request.body())
    require_fields(data, "poster", "bid_id")
    envelope = authenticate(data, "accept_bid", "poster")
    task_number = parse_task_id(task_id)

    board = get_task_board()
    result = await run_in_threadpool(
        board.accept_bid, task_number, data.get("bid_id"), envelope.address
    )
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Submit endpoint
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/submit")
async def submit_work(task_id: str, request: Request) -> JSONResponse:
    """Submit proof of completed work."""
    data = parse_json_body(await request.body())
    require_fields(data, "worker", "proof_url")
    envelope = authenticate(data, "submit", "worker")
    task_number = parse_task_id(task_id)

    board = get_task_board()
    result = await run_in_threadpool(
        board.submit_work,
        task_number,
        envelope.address,
        data.get("proof_url"),
        data.get("description"),
    )
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Verify endpoint
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/verify")
async def verify_work(task_id: str, request: Request) -> JSONResponse:
    """Approve or reject submitted work."""
    data = parse_json_body(await request.body())
    require_fields(data, "poster", "approved")
    envelope = authenticate(data, "verify", "poster")
    task_number = parse_task_id(task_id)

    board = get_task_board()
    result = await run_in_threadpool(
        board.verify_work,
        task_number,
        envelope.address,
        data.get("approved"),
        payment_tx=data.get("payment_tx"),
        reason=data.get("reason"),
    )
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Cancel endpoint (POST and PATCH)
# ---------------------------------------------------------------------------


@router.api_route("/tasks/{task_id}/cancel", methods=["POST", "PATCH"])
async def cancel_task(task_id: str, request: Request) -> JSONResponse:
    """Cancel an open task."""
    data = parse_json_body(await request.body())
    require_fields(data, "poster")
    envelope = authenticate(data, "cancel", "poster")
    task_number = parse_task_id(task_id)

    board = get_task_board()
    result = await run_in_threadpool(board.cancel_task, task_number, envelope.address)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Method-not-allowed: action routes
#
# Without these, requests like GET /tasks/{task_id}/cancel would fall through
# to the catch-all and answer NOT_FOUND instead of 405.
# ---------------------------------------------------------------------------


@router.api_route(
    "/tasks/{task_id}/accept",
    methods=["GET", "PUT", "PATCH", "DELETE"],
)
async def accept_method_not_allowed(task_id: str, request: Request) -> None:
    """Reject wrong methods on /tasks/{task_id}/accept."""
    _ = (task_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})


@router.api_route(
    "/tasks/{task_id}/submit",
    methods=["GET", "PUT", "PATCH", "DELETE"],
)
async def submit_method_not_allowed(task_id: str, request: Request) -> None:
    """Reject wrong methods on /tasks/{task_id}/submit."""
    _ = (task_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})


@router.api_route(
    "/tasks/{task_id}/verify",
    methods=["GET", "PUT", "PATCH", "DELETE"],
)
async def verify_method_not_allowed(task_id: str, request: Request) -> None:
    """Reject wrong methods on /tasks/{task_id}/verify."""
    _ = (task_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})


@router.api_route(
    "/tasks/{task_id}/cancel",
    methods=["GET", "PUT", "DELETE"],
)
async def cancel_method_not_allowed(task_id: str, request: Request) -> None:
    """Reject wrong methods on /tasks/{task_id}/cancel."""
    _ = (task_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})


# ---------------------------------------------------------------------------
# GET /tasks/{task_id}: MUST be LAST (parameterized catch-all)
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    """Get a task with its bids and activity log."""
    task_number = parse_task_id(task_id)
    board = get_task_board()
    return await run_in_threadpool(board.get_task, task_number)
