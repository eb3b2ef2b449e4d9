"""Bid placement, listing, and withdrawal endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from bounty_board_service.core.exceptions import ServiceError
from bounty_board_service.routers.validation import (
    authenticate,
    get_task_board,
    parse_bid_id,
    parse_json_body,
    parse_task_id,
    require_fields,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/bids: place bid
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/bids", status_code=201)
async def place_bid(task_id: str, request: Request) -> JSONResponse:
    """Place a bid on an open task."""
    data = parse_json_body(await request.body())
    require_fields(data, "bidder", "amount_sats")
    envelope = authenticate(data, "bid", "bidder")
    task_number = parse_task_id(task_id)

    board = get_task_board()
    result = await run_in_threadpool(
        board.place_bid,
        task_number,
        envelope.address,
        data.get("amount_sats"),
        message=data.get("message"),
        bidder_name=data.get("bidder_name"),
        bidder_secondary=data.get("bidder_stx"),
        signature=envelope.signature,
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks/{task_id}/bids: list bids
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/bids")
async def list_bids(task_id: str) -> dict[str, Any]:
    """List bids on a task, oldest first."""
    task_number = parse_task_id(task_id)
    board = get_task_board()
    return await run_in_threadpool(board.list_bids, task_number)


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/bids/{bid_id}/withdraw: withdraw bid
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/bids/{bid_id}/withdraw")
async def withdraw_bid(task_id: str, bid_id: str, request: Request) -> JSONResponse:
    """Withdraw a pending bid (bidder only)."""
    data = parse_json_body(await request.body())
    require_fields(data, "bidder")
    envelope = authenticate(data, "withdraw_bid", "bidder")
    task_number = parse_task_id(task_id)
    bid_number = parse_bid_id(bid_id)

    board = get_task_board()
    result = await run_in_threadpool(
        board.withdraw_bid, task_number, bid_number, envelope.address
    )
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Method-not-allowed: bid routes
# ---------------------------------------------------------------------------


@router.api_route(
    "/tasks/{task_id}/bids",
    methods=["PUT", "PATCH", "DELETE"],
)
async def bids_method_not_allowed(task_id: str, request: Request) -> None:
    """Reject wrong methods on /tasks/{task_id}/bids."""
    _ = (task_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})


@router.api_route(
    "/tasks/{task_id}/bids/{bid_id}/withdraw",
    methods=["GET", "PUT", "PATCH", "DELETE"],
)
async def withdraw_method_not_allowed(
    task_id: str,
    bid_id: str,
    request: Request,
) -> None:
    """Reject wrong methods on /tasks/{task_id}/bids/{bid_id}/withdraw."""
    _ = (task_id, bid_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})
